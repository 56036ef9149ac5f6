from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator


class RuleModel(BaseModel):
    # Keys we don't know about (hand-edited or imported files) survive a load/save cycle.
    model_config = ConfigDict(extra="allow")

    label_name: str
    sender_pattern: Optional[str] = None
    subject_pattern: Optional[str] = None
    subject_contains: Optional[List[str]] = None
    query: Optional[str] = None
    enabled: bool = True
    created: Optional[datetime] = None
    last_run: Optional[datetime] = None
    updated: Optional[datetime] = None

    @field_validator("label_name")
    @classmethod
    def label_name_not_blank(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("label_name cannot be empty")
        return value


class RuleSetConfig(BaseModel):
    """On-disk envelope of the rules file."""

    version: str
    lastUpdated: Optional[datetime] = None
    rules: List[RuleModel] = Field(default_factory=list)


# --- Tool inputs ---
class AddRuleParams(BaseModel):
    label_name: str
    sender_pattern: Optional[str] = None
    subject_pattern: Optional[str] = None
    subject_contains: Optional[List[str]] = None
    query: Optional[str] = None
    enabled: bool = True


class RuleIndexParams(BaseModel):
    rule_index: int = Field(ge=0)


class UpdateRuleParams(RuleIndexParams):
    label_name: Optional[str] = None
    sender_pattern: Optional[str] = None
    subject_pattern: Optional[str] = None
    subject_contains: Optional[List[str]] = None
    query: Optional[str] = None
    enabled: Optional[bool] = None


class RunRulesParams(BaseModel):
    dry_run: bool = False
    max_per_rule: Optional[int] = Field(default=None, ge=1)
    batch_size: int = Field(default=100, ge=1)
    max_batches: int = Field(default=10, ge=1)


class ExportRulesParams(BaseModel):
    file_path: Optional[str] = None


class ImportRulesParams(BaseModel):
    file_path: str = Field(min_length=1)
    merge: bool = False
