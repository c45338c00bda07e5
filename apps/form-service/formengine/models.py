from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

FieldType = Literal["text", "textarea", "select", "checkbox", "radio", "text-with-validation"]
ValidationType = Literal["required", "pattern", "minLength", "maxLength", "custom"]
ConditionOperator = Literal["equals", "notEquals"]
VisibilityOperator = Literal["equals", "notEquals", "contains"]

FIELD_TYPES = ("text", "textarea", "select", "checkbox", "radio", "text-with-validation")
VALIDATION_TYPES = ("required", "pattern", "minLength", "maxLength", "custom")
GROUP_TYPE = "group"

ScalarValue = Union[bool, int, float, str]


class SchemaModel(BaseModel):
    """Base for schema nodes: camelCase JSON keys, immutable once parsed."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class FieldOption(SchemaModel):
    label: str
    value: str


class ShowWhenCondition(SchemaModel):
    field: str
    equals: ScalarValue


class VisibilityCondition(SchemaModel):
    field: str
    operator: VisibilityOperator
    value: Union[str, List[str]]


class ValidationCondition(SchemaModel):
    field: str
    operator: ConditionOperator
    value: ScalarValue


class ValidationRule(SchemaModel):
    type: ValidationType
    value: Optional[Union[int, float, str]] = None
    message: str
    condition: Optional[ValidationCondition] = None


class AutoFillConfig(SchemaModel):
    api_endpoint: str = Field(alias="apiEndpoint")
    depends_on: List[str] = Field(default_factory=list, alias="dependsOn")
    target_fields: List[str] = Field(default_factory=list, alias="targetFields")


class FieldConfig(SchemaModel):
    id: str
    type: FieldType
    label: str
    placeholder: Optional[str] = None
    default_value: Optional[Union[bool, str, List[str]]] = Field(default=None, alias="defaultValue")
    options: Optional[List[FieldOption]] = None
    validations: Optional[List[ValidationRule]] = None
    visibility_condition: Optional[VisibilityCondition] = Field(default=None, alias="visibilityCondition")
    auto_fill: Optional[AutoFillConfig] = Field(default=None, alias="autoFill")
    show_when: Optional[ShowWhenCondition] = Field(default=None, alias="showWhen")


class GroupConfig(SchemaModel):
    id: str
    type: Literal["group"]
    title: str
    description: Optional[str] = None
    fields: List["SchemaItem"] = Field(default_factory=list)
    show_when: Optional[ShowWhenCondition] = Field(default=None, alias="showWhen")
    auto_fill: Optional[AutoFillConfig] = Field(default=None, alias="autoFill")


SchemaItem = Annotated[Union[FieldConfig, GroupConfig], Field(discriminator="type")]

GroupConfig.model_rebuild()


class FormSchema(SchemaModel):
    title: str
    description: Optional[str] = None
    fields: List[SchemaItem] = Field(default_factory=list)

    def to_json_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


def is_field_config(item: Union[FieldConfig, GroupConfig]) -> bool:
    return item.type != GROUP_TYPE


def is_group_config(item: Union[FieldConfig, GroupConfig]) -> bool:
    return item.type == GROUP_TYPE


class ResolvedAutoFillFieldRef(SchemaModel):
    key: str
    path: str


class ResolvedAutoFillConfig(SchemaModel):
    """Auto-fill declaration with every reference resolved to an absolute path."""

    key: str
    api_endpoint: str = Field(alias="apiEndpoint")
    depends_on: List[ResolvedAutoFillFieldRef] = Field(default_factory=list, alias="dependsOn")
    target_fields: List[ResolvedAutoFillFieldRef] = Field(default_factory=list, alias="targetFields")


class AutoFillResponse(BaseModel):
    success: bool
    data: Optional[Dict[str, Any]] = None
    error: Optional[str] = None


class SchemaParseRequest(BaseModel):
    text: str


class SchemaParseResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    form_schema: Dict[str, Any] = Field(alias="schema")
    form_id: str = Field(alias="formId")
    auto_fill: List[Dict[str, Any]] = Field(default_factory=list, alias="autoFill")


class SubmitRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    form_schema: Union[str, Dict[str, Any]] = Field(alias="schema")
    data: Dict[str, Any] = Field(default_factory=dict)
