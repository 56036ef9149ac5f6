from typing import Any, Dict, List, Optional
from gmail_mcp.core import config as app_config
from gmail_mcp.core.tool_utils import dump, parse_params
from gmail_mcp.core_api import rules_api_service
from .models import (
    AddRuleParams,
    ExportRulesParams,
    ImportRulesParams,
    RuleIndexParams,
    RunRulesParams,
    UpdateRuleParams,
)


def _describe_rule(index: int, rule) -> Dict[str, Any]:
    described = dump(rule)
    described["index"] = index
    described["created"] = described.get("created") or "Unknown"
    described["last_run"] = described.get("last_run") or "Never"
    return described


def list_auto_labeling_rules(session) -> Dict[str, Any]:
    """Stored auto-labeling rules, each with its index for update/remove."""
    rules = rules_api_service.load_rules()
    return {
        "message": f"Found {len(rules)} auto-labeling rules",
        "total_rules": len(rules),
        "enabled_rules": sum(1 for rule in rules if rule.enabled),
        "rules": [_describe_rule(i, rule) for i, rule in enumerate(rules)],
        "config_file": str(app_config.RULES_FILE),
    }


def add_auto_labeling_rule(
    session,
    label_name: str,
    sender_pattern: Optional[str] = None,
    subject_pattern: Optional[str] = None,
    subject_contains: Optional[List[str]] = None,
    query: Optional[str] = None,
    enabled: bool = True,
) -> Dict[str, Any]:
    """Save a rule that labels matching emails with `label_name`.

    At least one of sender_pattern, subject_pattern, subject_contains or query is required.
    """
    params = parse_params(
        AddRuleParams,
        label_name=label_name,
        sender_pattern=sender_pattern,
        subject_pattern=subject_pattern,
        subject_contains=subject_contains,
        query=query,
        enabled=enabled,
    )
    result = rules_api_service.add_rule(**params.model_dump())
    return {
        "message": "Auto-labeling rule added successfully!",
        "rule_index": result["index"],
        "rule": dump(result["rule"]),
        "total_rules": result["total_rules"],
    }


def remove_auto_labeling_rule(session, rule_index: int) -> Dict[str, Any]:
    params = parse_params(RuleIndexParams, rule_index=rule_index)
    result = rules_api_service.remove_rule(params.rule_index)
    return {
        "message": f"Rule {params.rule_index} removed successfully!",
        "removed_rule": dump(result["removed_rule"]),
        "remaining_rules": result["remaining_rules"],
    }


def update_auto_labeling_rule(
    session,
    rule_index: int,
    label_name: Optional[str] = None,
    sender_pattern: Optional[str] = None,
    subject_pattern: Optional[str] = None,
    subject_contains: Optional[List[str]] = None,
    query: Optional[str] = None,
    enabled: Optional[bool] = None,
) -> Dict[str, Any]:
    """Change fields of a stored rule; omitted fields keep their value."""
    params = parse_params(
        UpdateRuleParams,
        rule_index=rule_index,
        label_name=label_name,
        sender_pattern=sender_pattern,
        subject_pattern=subject_pattern,
        subject_contains=subject_contains,
        query=query,
        enabled=enabled,
    )
    changes = params.model_dump(exclude={"rule_index"}, exclude_none=True)
    result = rules_api_service.update_rule(params.rule_index, **changes)
    return {
        "message": f"Rule {params.rule_index} updated successfully!",
        "original_rule": dump(result["original"]),
        "updated_rule": dump(result["updated"]),
    }


def run_auto_labeling_rules(
    session,
    dry_run: bool = False,
    max_per_rule: Optional[int] = None,
    batch_size: int = 100,
    max_batches: int = 10,
) -> Dict[str, Any]:
    """Run every enabled rule. Use dry_run=true to only count matches."""
    params = parse_params(
        RunRulesParams, dry_run=dry_run, max_per_rule=max_per_rule, batch_size=batch_size, max_batches=max_batches
    )
    return rules_api_service.run_rules(
        session.service,
        dry_run=params.dry_run,
        max_per_rule=params.max_per_rule,
        batch_size=params.batch_size,
        max_batches=params.max_batches,
    )


def export_auto_labeling_rules(session, file_path: Optional[str] = None) -> Dict[str, Any]:
    params = parse_params(ExportRulesParams, file_path=file_path)
    result = rules_api_service.export_rules(params.file_path)
    result["message"] = "Rules exported successfully!"
    return result


def import_auto_labeling_rules(session, file_path: str, merge: bool = False) -> Dict[str, Any]:
    params = parse_params(ImportRulesParams, file_path=file_path, merge=merge)
    result = rules_api_service.import_rules(params.file_path, merge=params.merge)
    result["message"] = "Rules imported successfully!"
    return result


TOOLS = [
    list_auto_labeling_rules,
    add_auto_labeling_rule,
    remove_auto_labeling_rule,
    update_auto_labeling_rule,
    run_auto_labeling_rules,
    export_auto_labeling_rules,
    import_auto_labeling_rules,
]
