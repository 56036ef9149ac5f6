# gmail_mcp/core_api/rules_api_service.py
import json
import logging
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional
from pydantic import ValidationError
from gmail_mcp.core import config as app_config
from gmail_mcp.features.rule_management.models import RuleModel, RuleSetConfig
from gmail_mcp.core_api import gmail_api_service as gmail_api_helpers
from .exceptions import (
    InvalidParameterError,
    InvalidRequestError,
    RuleNotFoundError,
    RuleStorageError,
)

logger = logging.getLogger(__name__)

NO_CRITERIA_MESSAGE = "No search criteria provided (need sender_pattern, subject_pattern, subject_contains, or query)"
MAX_PAGE_SIZE = 500
AD_HOC_PAGE_SIZE = 100

# Fields a caller may set through add/update; everything else is bookkeeping.
EDITABLE_FIELDS = ("label_name", "sender_pattern", "subject_pattern", "subject_contains", "query", "enabled")
CRITERIA_FIELDS = ("sender_pattern", "subject_pattern", "subject_contains", "query")


def _rules_file_path() -> Path:
    return Path(app_config.RULES_FILE)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _dump_rule(rule: RuleModel) -> Dict[str, Any]:
    return rule.model_dump(mode="json")


# --- Rule Storage ---
def _parse_rule_entries(raw_rules: List[Any], source: Path) -> List[RuleModel]:
    valid_rules: List[RuleModel] = []
    invalid_rule_count = 0
    for i, rule_dict in enumerate(raw_rules):
        try:
            valid_rules.append(RuleModel.model_validate(rule_dict))
        except ValidationError as e:
            invalid_rule_count += 1
            logger.warning(
                f"Skipping invalid rule #{i} in {source} due to validation error: {e.errors()} in rule data: {rule_dict}"
            )
    if invalid_rule_count > 0:
        logger.warning(
            f"Loaded {len(valid_rules)} valid rules and skipped {invalid_rule_count} invalid rules."
        )
    return valid_rules


def load_rules() -> List[RuleModel]:
    """Loads rules from the rules file.

    Never raises: a missing, unreadable or malformed file yields an empty list.
    """
    rules_file = _rules_file_path()
    if not rules_file.exists():
        logger.info(f"Rules file not found at {rules_file}. Returning empty list.")
        return []
    try:
        with open(rules_file, "r") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        logger.error(f"Error decoding JSON from rules file {rules_file}: {e}")
        return []
    except (IOError, UnicodeDecodeError) as e:
        logger.error(f"Could not read rules file {rules_file}: {e}")
        return []

    raw_rules = data.get("rules") if isinstance(data, dict) else None
    if not isinstance(raw_rules, list):
        logger.warning(f"Rules file {rules_file} has no 'rules' array. Returning empty list.")
        return []

    rules = _parse_rule_entries(raw_rules, rules_file)
    logger.debug(f"Loaded {len(rules)} rules from {rules_file}.")
    return rules


def save_rules(rules: List[RuleModel]) -> None:
    """Writes the full rule list inside the versioned envelope. Raises RuleStorageError."""
    rules_file = _rules_file_path()
    envelope = RuleSetConfig(
        version=app_config.RULES_CONFIG_VERSION,
        lastUpdated=_now(),
        rules=rules,
    )
    tmp_name = None
    try:
        rules_file.parent.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile(
            "w", dir=rules_file.parent, prefix=f".{rules_file.name}.", suffix=".tmp", delete=False
        ) as tmp:
            tmp_name = tmp.name
            json.dump(envelope.model_dump(mode="json"), tmp, indent=2)
        os.replace(tmp_name, rules_file)
        logger.info(f"Successfully saved {len(rules)} rules to {rules_file}.")
    except (IOError, OSError) as e:
        logger.error(f"IOError saving rules file {rules_file}: {e}", exc_info=True)
        if tmp_name and os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise RuleStorageError(
            f"Could not write to rules file: {rules_file}", original_exception=e
        )


def _check_index(rules: List[RuleModel], rule_index: int) -> None:
    if not isinstance(rule_index, int) or isinstance(rule_index, bool) or rule_index < 0:
        raise InvalidParameterError("rule_index must be a non-negative number")
    if not rules:
        raise RuleNotFoundError(f"Rule index {rule_index} is out of range. No rules are stored.")
    if rule_index >= len(rules):
        raise RuleNotFoundError(
            f"Rule index {rule_index} is out of range. Available rules: 0-{len(rules) - 1}"
        )


def add_rule(
    label_name: str,
    sender_pattern: Optional[str] = None,
    subject_pattern: Optional[str] = None,
    subject_contains: Optional[List[str]] = None,
    query: Optional[str] = None,
    enabled: bool = True,
) -> Dict[str, Any]:
    """Appends a rule and saves. Returns {"index", "rule", "total_rules"}."""
    if not label_name or not str(label_name).strip():
        raise InvalidParameterError("label_name is required")
    try:
        new_rule = RuleModel(
            label_name=label_name,
            sender_pattern=sender_pattern or None,
            subject_pattern=subject_pattern or None,
            subject_contains=subject_contains or None,
            query=query or None,
            enabled=enabled,
            created=_now(),
            last_run=None,
        )
    except ValidationError as e:
        raise InvalidParameterError(f"Invalid rule: {e.errors()}", original_exception=e)

    if not build_rule_query(new_rule):
        raise InvalidParameterError(NO_CRITERIA_MESSAGE)

    rules = load_rules()
    rules.append(new_rule)
    save_rules(rules)
    logger.info(f"Rule for label '{label_name}' added at index {len(rules) - 1}.")
    return {"index": len(rules) - 1, "rule": new_rule, "total_rules": len(rules)}


def update_rule(rule_index: int, **changes: Any) -> Dict[str, Any]:
    """Applies the given field changes to the rule at `rule_index`; None values are ignored."""
    unknown = set(changes) - set(EDITABLE_FIELDS)
    if unknown:
        raise InvalidParameterError(f"Unknown rule field(s): {', '.join(sorted(unknown))}")

    rules = load_rules()
    _check_index(rules, rule_index)

    original = rules[rule_index]
    merged = _dump_rule(original)
    merged.update({k: v for k, v in changes.items() if v is not None})
    # An empty string or list clears that criterion, as on add.
    for key in CRITERIA_FIELDS:
        merged[key] = merged.get(key) or None
    merged["updated"] = _now()
    try:
        updated = RuleModel.model_validate(merged)
    except ValidationError as e:
        raise InvalidParameterError(f"Invalid rule update: {e.errors()}", original_exception=e)
    if not build_rule_query(updated):
        raise InvalidParameterError(NO_CRITERIA_MESSAGE)

    rules[rule_index] = updated
    save_rules(rules)
    logger.info(f"Rule at index {rule_index} updated.")
    return {"rule_index": rule_index, "original": original, "updated": updated}


def remove_rule(rule_index: int) -> Dict[str, Any]:
    rules = load_rules()
    _check_index(rules, rule_index)
    removed = rules.pop(rule_index)
    save_rules(rules)
    logger.info(f"Rule at index {rule_index} ('{removed.label_name}') removed.")
    return {"index": rule_index, "removed_rule": removed, "remaining_rules": len(rules)}


def default_export_path() -> Path:
    return Path(app_config.DATA_DIR) / f"auto-labeling-rules-backup-{datetime.now().strftime('%Y-%m-%d')}.json"


def export_rules(file_path: Optional[str] = None) -> Dict[str, Any]:
    rules = load_rules()
    export_path = Path(file_path).expanduser() if file_path else default_export_path()
    export_data = {
        "version": app_config.RULES_CONFIG_VERSION,
        "exported": _now().isoformat(),
        "rules": [_dump_rule(rule) for rule in rules],
    }
    serialized = json.dumps(export_data, indent=2)
    try:
        export_path.parent.mkdir(parents=True, exist_ok=True)
        export_path.write_text(serialized)
    except (IOError, OSError) as e:
        logger.error(f"Failed to export rules to {export_path}: {e}", exc_info=True)
        raise RuleStorageError(f"Could not write export file: {export_path}", original_exception=e)
    logger.info(f"Exported {len(rules)} rules to {export_path}.")
    return {
        "export_path": str(export_path),
        "rules_exported": len(rules),
        "file_size": f"{round(len(serialized) / 1024)} KB",
    }


def import_rules(file_path: str, merge: bool = False) -> Dict[str, Any]:
    """Replaces the stored rules with those in `file_path`, or appends them when merging."""
    if not file_path:
        raise InvalidParameterError("file_path is required")
    import_path = Path(file_path).expanduser()
    try:
        with open(import_path, "r") as f:
            import_data = json.load(f)
    except json.JSONDecodeError as e:
        raise InvalidRequestError(f"Import file {import_path} is not valid JSON: {e}", original_exception=e)
    except (IOError, OSError) as e:
        raise RuleStorageError(f"Could not read import file: {import_path}", original_exception=e)

    raw_rules = import_data.get("rules") if isinstance(import_data, dict) else None
    if not isinstance(raw_rules, list):
        raise InvalidRequestError('Invalid import file format. Expected "rules" array.')

    imported: List[RuleModel] = []
    for i, rule_dict in enumerate(raw_rules):
        try:
            imported.append(RuleModel.model_validate(rule_dict))
        except ValidationError as e:
            raise InvalidRequestError(
                f"Invalid rule at position {i} in {import_path}: {e.errors()}", original_exception=e
            )

    rules = load_rules() + imported if merge else imported
    save_rules(rules)
    logger.info(f"Imported {len(imported)} rules from {import_path} (merge={merge}).")
    return {
        "import_path": str(import_path),
        "rules_imported": len(imported),
        "total_rules": len(rules),
        "merge_mode": merge,
        "imported_version": import_data.get("version") or "Unknown",
    }


# --- Query Synthesis ---
def build_rule_query(rule: RuleModel) -> str:
    """Gmail search query for a rule; "" means the rule has no usable criteria.

    Embedded double quotes in patterns are passed through unescaped.
    """
    if rule.query:
        return rule.query
    parts: List[str] = []
    if rule.sender_pattern:
        parts.append(f"from:{rule.sender_pattern}")
    if rule.subject_pattern:
        parts.append(f'subject:"{rule.subject_pattern}"')
    if rule.subject_contains:
        subject_terms = [f'subject:"{text}"' for text in rule.subject_contains]
        parts.append(f"({' OR '.join(subject_terms)})")
    return " ".join(parts)


# --- Rule Execution ---
def _resolve_label_id(service: Any, label_name: str, dry_run: bool) -> Optional[str]:
    # A dry run never creates labels.
    if dry_run:
        existing = gmail_api_helpers.find_label_by_name(service, label_name)
        return existing["id"] if existing else None
    return gmail_api_helpers.find_or_create_label(service, label_name)


def _collect_matching_ids(
    service: Any,
    query: str,
    page_size: int,
    max_pages: int,
    max_ids: Optional[int] = None,
) -> Dict[str, Any]:
    message_ids: List[str] = []
    page_token = None
    pages_fetched = 0
    while pages_fetched < max_pages:
        response = gmail_api_helpers.list_messages(
            service, query_string=query, max_results=page_size, page_token=page_token
        )
        messages = response.get("messages", [])
        if not messages:
            break
        pages_fetched += 1
        message_ids.extend(m["id"] for m in messages)
        if max_ids is not None and len(message_ids) >= max_ids:
            message_ids = message_ids[:max_ids]
            break
        page_token = response.get("nextPageToken")
        if not page_token:
            break
    return {"ids": message_ids, "pages": pages_fetched}


def _apply_label(service: Any, message_ids: List[str], label_id: str) -> int:
    labeled = 0
    chunk_size = gmail_api_helpers.MAX_IDS_PER_BATCH_CALL
    for start in range(0, len(message_ids), chunk_size):
        chunk = message_ids[start:start + chunk_size]
        gmail_api_helpers.batch_modify_message_labels(service, chunk, add_label_ids=[label_id])
        labeled += len(chunk)
    return labeled


def _process_rule(
    service: Any,
    rule: RuleModel,
    dry_run: bool,
    page_size: int,
    max_pages: int,
    max_ids: Optional[int] = None,
) -> Dict[str, Any]:
    """Runs one rule end to end and returns its result entry."""
    label_id = _resolve_label_id(service, rule.label_name, dry_run)
    query = build_rule_query(rule)
    result: Dict[str, Any] = {"rule": rule.label_name, "label_id": label_id}
    if not query:
        result.update({"emails_found": 0, "status": "no_search_criteria"})
        return result

    matches = _collect_matching_ids(service, query, page_size, max_pages, max_ids)
    found = len(matches["ids"])
    if found == 0:
        result.update({"emails_found": 0, "status": "no_emails_found"})
        return result

    result.update({"emails_found": found, "batches_processed": matches["pages"], "query": query})
    if dry_run:
        result["status"] = "dry_run"
        return result

    result["emails_labeled"] = _apply_label(service, matches["ids"], label_id)
    result["status"] = "labeled"
    return result


def run_rules(
    service: Any,
    dry_run: bool = False,
    max_per_rule: Optional[int] = None,
    batch_size: int = 100,
    max_batches: int = 10,
) -> Dict[str, Any]:
    """Runs every enabled stored rule against the mailbox.

    A failing rule is recorded in `errors` and does not stop the run. After a
    rule labels messages its `last_run` is stamped and the rule list saved.
    """
    if not service:
        raise InvalidParameterError("Gmail service not available for run_rules.")

    rules = load_rules()
    enabled_rules = [rule for rule in rules if rule.enabled is not False]
    summary: Dict[str, Any] = {
        "message": "",
        "total_rules": len(rules),
        "enabled_rules": len(enabled_rules),
        "processed": 0,
        "failed": 0,
        "results": [],
        "errors": [],
    }
    if not enabled_rules:
        summary["message"] = "No enabled auto-labeling rules found"
        return summary

    page_size = max(1, min(batch_size, MAX_PAGE_SIZE))
    for rule in enabled_rules:
        logger.info(f"Running rule for label '{rule.label_name}' (dry_run={dry_run}).")
        try:
            result = _process_rule(
                service, rule, dry_run, page_size, max_batches, max_ids=max_per_rule
            )
            if result["status"] == "labeled":
                rule.last_run = _now()
                save_rules(rules)
            summary["results"].append(result)
        except Exception as e:
            logger.error(f"Error running rule '{rule.label_name}': {e}", exc_info=True)
            summary["errors"].append({"rule": rule.label_name, "error": getattr(e, "message", str(e))})

    summary["processed"] = len(summary["results"])
    summary["failed"] = len(summary["errors"])
    summary["message"] = (
        "Auto-labeling rules dry run completed"
        if dry_run
        else "Auto-labeling rules executed successfully"
    )
    return summary


def auto_label_emails(service: Any, rules: List[RuleModel], dry_run: bool = False) -> Dict[str, Any]:
    """Applies ad-hoc rules (not persisted) using a single page of matches per rule."""
    if not rules:
        raise InvalidParameterError("rules array is required")

    results: List[Dict[str, Any]] = []
    errors: List[Dict[str, Any]] = []
    for rule in rules:
        if not build_rule_query(rule):
            errors.append({"rule": rule.label_name, "error": NO_CRITERIA_MESSAGE})
            continue
        try:
            results.append(_process_rule(service, rule, dry_run, AD_HOC_PAGE_SIZE, max_pages=1))
        except Exception as e:
            logger.error(f"Error auto-labeling for '{rule.label_name}': {e}", exc_info=True)
            errors.append({"rule": rule.label_name, "error": getattr(e, "message", str(e))})

    return {
        "message": "Auto-labeling dry run completed" if dry_run else "Auto-labeling completed",
        "rules_processed": len(rules),
        "successful": len(results),
        "failed": len(errors),
        "results": results,
        "errors": errors,
    }
