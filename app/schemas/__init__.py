from typing import Optional, Type, TypeVar
from fastapi import Request
from pydantic import BaseModel, ValidationError

T = TypeVar("T", bound=BaseModel)


async def parse_body(request: Request, model: Type[T]) -> Optional[T]:
    """Validated JSON body, or None when it's missing, malformed, or fails validation."""
    try:
        payload = await request.json()
    except ValueError:
        return None
    try:
        return model.model_validate(payload)
    except ValidationError:
        return None
