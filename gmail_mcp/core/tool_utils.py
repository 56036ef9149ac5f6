from typing import Annotated, Any, Type, TypeVar
from pydantic import BaseModel, BeforeValidator, ValidationError
from gmail_mcp.core_api.exceptions import InvalidParameterError
from gmail_mcp.core_api.message_utils import clamp

ModelT = TypeVar("ModelT", bound=BaseModel)


def clamped(low: int, high: int, default: int):
    """An int field that silently clamps into [low, high], falling back to `default`."""
    return Annotated[int, BeforeValidator(lambda value: clamp(value, low, high, default))]


def parse_params(model_cls: Type[ModelT], **kwargs: Any) -> ModelT:
    """Validates tool arguments; any validation failure is an invalid-params error."""
    try:
        return model_cls.model_validate(kwargs)
    except ValidationError as e:
        details = "; ".join(
            f"{'.'.join(str(part) for part in err['loc']) or 'input'}: {err['msg']}" for err in e.errors()
        )
        raise InvalidParameterError(details, original_exception=e)


def dump(value: Any) -> Any:
    """JSON-ready form of models (and lists/dicts of them) returned by tools."""
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, list):
        return [dump(item) for item in value]
    if isinstance(value, dict):
        return {key: dump(item) for key, item in value.items()}
    return value
