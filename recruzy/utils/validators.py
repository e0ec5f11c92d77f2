# recruzy/utils/validators.py

from typing import Any, Dict, List, Type, TypeVar

from flask import current_app, request
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from recruzy.errors import ValidationError

SchemaT = TypeVar("SchemaT", bound=BaseModel)


def error_details(error: PydanticValidationError) -> List[Dict[str, Any]]:
    """JSON-friendly subset of pydantic errors (ctx may hold exceptions)."""
    return [
        {"loc": [str(part) for part in err["loc"]], "msg": err["msg"], "type": err["type"]}
        for err in error.errors()
    ]


def validate_payload(schema: Type[SchemaT], data: Any, allow_empty: bool = False) -> SchemaT:
    if allow_empty and not data:
        data = {}
    elif not data or not isinstance(data, dict):
        raise ValidationError("Invalid or missing data")
    try:
        return schema.model_validate(data)
    except PydanticValidationError as e:
        current_app.logger.warning(
            f"Invalid data from {request.remote_addr}: {error_details(e)}"
        )
        raise ValidationError("Invalid input data", details=error_details(e)) from e


def parse_json(schema: Type[SchemaT], allow_empty: bool = False) -> SchemaT:
    """Валидирует JSON-тело запроса по pydantic-схеме до обращения к БД."""
    return validate_payload(schema, request.get_json(silent=True), allow_empty)
