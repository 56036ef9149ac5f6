import pytest
from pydantic import ValidationError

from gmail_mcp.features.rule_management.models import RuleModel, RuleSetConfig, RunRulesParams


def test_rule_model_defaults():
    rule = RuleModel(label_name="Work", sender_pattern="boss@example.com")

    assert rule.enabled is True
    assert rule.created is None
    assert rule.last_run is None


def test_rule_model_blank_label_name_rejected():
    with pytest.raises(ValidationError, match="label_name cannot be empty"):
        RuleModel(label_name="   ", query="x")


def test_rule_model_keeps_unknown_keys():
    rule = RuleModel(label_name="Work", query="x", color="blue")

    assert rule.model_dump()["color"] == "blue"


def test_rule_set_config_parses_timestamps():
    config = RuleSetConfig.model_validate(
        {
            "version": "1.0.0",
            "lastUpdated": "2024-10-21T09:00:00Z",
            "rules": [{"label_name": "Work", "query": "x", "last_run": "2024-10-20T08:00:00Z"}],
        }
    )

    assert config.lastUpdated.year == 2024
    assert config.rules[0].last_run.day == 20


def test_run_rules_params_bounds():
    with pytest.raises(ValidationError):
        RunRulesParams(max_per_rule=0)

    assert RunRulesParams().max_per_rule is None
