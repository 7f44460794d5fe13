"""HTTP handlers."""
import json

from aiohttp import web
from pydantic import BaseModel, ValidationError as PydanticValidationError

from core.exceptions import ValidationError


async def parse_body(request: web.Request, model: type[BaseModel]) -> BaseModel:
    """Read the JSON body into a DTO; bad input becomes a ValidationError."""
    try:
        data = await request.json() if request.can_read_body else {}
    except json.JSONDecodeError as e:
        raise ValidationError("Request body must be JSON") from e
    try:
        return model.model_validate(data or {})
    except PydanticValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(part) for part in first.get("loc", ()))
        raise ValidationError(f"{field}: {first.get('msg')}" if field else first.get("msg")) from e


def get_session(request: web.Request):
    """New database session from the app's session factory."""
    return request.app["db"]()
