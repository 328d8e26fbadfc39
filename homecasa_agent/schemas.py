"""Request bodies accepted by the `/ha/*` agent routes."""

from __future__ import annotations

import re
from typing import Annotated, Any, ClassVar, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from .errors import ValidationError

_SLUG_PATTERN = r"^\w+$"
_ENTITY_ID_RE = re.compile(r"(\w+)\.(\w+)")

# Integers stay integers so `50` is forwarded as `50`, not `50.0`.
Percent = Annotated[int, Field(ge=0, le=100)] | Annotated[float, Field(ge=0, le=100)]

RequestT = TypeVar("RequestT", bound="AgentRequest")


def split_entity_id(entity_id: str) -> tuple[str, str]:
    """Split `light.kitchen` into (`light`, `kitchen`).

    Both parts must be slugs, so the domain is safe to place in an upstream path.
    """
    match = _ENTITY_ID_RE.fullmatch(entity_id)
    if match is None:
        raise ValueError("entity_id must look like '<domain>.<object_id>' with word characters only")
    return match.group(1), match.group(2)


class AgentRequest(BaseModel):
    """Base for agent request bodies; unknown fields are rejected."""

    model_config = ConfigDict(extra="forbid")

    required_fields: ClassVar[tuple[str, ...]] = ()
    missing_error: ClassVar[str] = "Invalid request"


class CallServiceRequest(AgentRequest):
    required_fields: ClassVar[tuple[str, ...]] = ("domain", "service")
    missing_error: ClassVar[str] = "Missing domain or service"

    domain: str = Field(min_length=1, pattern=_SLUG_PATTERN)
    service: str = Field(min_length=1, pattern=_SLUG_PATTERN)
    entity_id: str | list[str] | None = None
    service_data: dict[str, Any] | None = None

    def service_payload(self) -> dict[str, Any]:
        """Merge `service_data` with the optional target entity."""
        payload = dict(self.service_data or {})
        if self.entity_id:
            payload["entity_id"] = self.entity_id
        return payload


class EntityRequest(AgentRequest):
    """Body naming a single entity; the service domain comes from its id."""

    required_fields: ClassVar[tuple[str, ...]] = ("entity_id",)
    missing_error: ClassVar[str] = "Missing entity_id"

    entity_id: str = Field(min_length=1)

    @field_validator("entity_id")
    @classmethod
    def _validate_entity_id(cls, value: str) -> str:
        split_entity_id(value)
        return value

    @property
    def domain(self) -> str:
        return split_entity_id(self.entity_id)[0]

    def service_payload(self) -> dict[str, Any]:
        return {"entity_id": self.entity_id}


class TurnOnRequest(EntityRequest):
    brightness: int | None = Field(default=None, ge=0, le=255)
    brightness_pct: Percent | None = None

    def service_payload(self) -> dict[str, Any]:
        """Only brightness fields the caller supplied are forwarded."""
        return self.model_dump(exclude_none=True)


def _describe_errors(exc: PydanticValidationError) -> str:
    parts = []
    for err in exc.errors():
        location = ".".join(str(item) for item in err.get("loc", ())) or "body"
        parts.append(f"{location}: {err.get('msg')}")
    return "; ".join(parts)


def _summarize_errors(model: type[AgentRequest], exc: PydanticValidationError) -> str:
    errors = exc.errors()
    for err in errors:
        loc = err.get("loc", ())
        if not loc or loc[0] not in model.required_fields:
            continue
        if err.get("type") == "missing" or err.get("input") in (None, ""):
            return model.missing_error
    fields = {str(err["loc"][0]) for err in errors if err.get("loc")}
    if len(fields) == 1:
        return f"Invalid {fields.pop()}"
    return "Invalid request"


def parse_body(model: type[RequestT], payload: Any) -> RequestT:
    """Validate one decoded JSON body, raising a 400-class `ValidationError`."""
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object", error="Invalid JSON body")
    try:
        return model.model_validate(payload)
    except PydanticValidationError as exc:
        raise ValidationError(_describe_errors(exc), error=_summarize_errors(model, exc)) from exc
