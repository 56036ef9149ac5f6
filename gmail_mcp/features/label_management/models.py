from typing import List, Literal, Optional
from pydantic import BaseModel, Field, model_validator
from gmail_mcp.core.tool_utils import clamped
from gmail_mcp.features.rule_management.models import RuleModel

LabelListVisibility = Literal["labelShow", "labelShowIfUnread", "labelHide"]
MessageListVisibility = Literal["show", "hide"]


class LabelSpec(BaseModel):
    name: str = Field(min_length=1)
    label_list_visibility: LabelListVisibility = "labelShow"
    message_list_visibility: MessageListVisibility = "show"


class CreateLabelsParams(BaseModel):
    labels: List[LabelSpec] = Field(min_length=1)


class LabelIdParams(BaseModel):
    label_id: str = Field(min_length=1)


class UpdateLabelParams(LabelIdParams):
    name: Optional[str] = None
    label_list_visibility: Optional[LabelListVisibility] = None
    message_list_visibility: Optional[MessageListVisibility] = None

    @model_validator(mode="after")
    def check_something_to_update(self):
        if not (self.name or self.label_list_visibility or self.message_list_visibility):
            raise ValueError("At least one field to update is required")
        return self


class EmailLabelsParams(BaseModel):
    email_id: str = Field(min_length=1)
    label_ids: List[str] = Field(min_length=1)


class SetEmailLabelsParams(BaseModel):
    email_id: str = Field(min_length=1)
    # May be empty: that strips every user label.
    label_ids: List[str]


class EmailsLabelsParams(BaseModel):
    email_ids: List[str] = Field(min_length=1)
    label_ids: List[str] = Field(min_length=1)


class EmailIdParams(BaseModel):
    email_id: str = Field(min_length=1)


class SearchByLabelParams(BaseModel):
    label_names: Optional[List[str]] = None
    label_ids: Optional[List[str]] = None
    additional_query: str = ""
    max: clamped(1, 100, 50) = 50

    @model_validator(mode="after")
    def check_labels_given(self):
        if not self.label_names and not self.label_ids:
            raise ValueError("Either label_names or label_ids is required")
        return self


class BulkLabelParams(BaseModel):
    query: str = Field(min_length=1)
    label_ids: List[str] = Field(min_length=1)
    operation: Literal["add", "remove", "replace"] = "add"
    batch_size: Optional[int] = 100
    dry_run: bool = False


class AutoLabelParams(BaseModel):
    rules: List[RuleModel] = Field(min_length=1)
    dry_run: bool = False


class LabelByQueryParams(BaseModel):
    query: str = Field(min_length=1)
    label_name: Optional[str] = None
    label_id: Optional[str] = None
    max: clamped(1, 500, 100) = 100
    dry_run: bool = False

    @model_validator(mode="after")
    def check_target_label(self):
        if not self.label_name and not self.label_id:
            raise ValueError("Either label_name or label_id is required")
        return self


class LabelStatisticsParams(BaseModel):
    label_ids: Optional[List[str]] = None


class CleanupLabelsParams(BaseModel):
    dry_run: bool = True
