"""Rewrite request model and input sanitization."""

import re
from typing import Any, Dict, Mapping, Optional, Tuple

from pydantic import AliasChoices, BaseModel, Field, ValidationError, ValidationInfo, field_validator

from sheets_rewrite.core.errors import ErrorKind, InvalidRequestError

MAX_PROMPT_LENGTH = 2000
MAX_MAIN_TEXT_LENGTH = 10000
MAX_CONTEXT_TEXT_LENGTH = 5000

# Control characters except tab, newline and carriage return
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")

# field -> (error kind, display label, max length)
_FIELD_RULES: Dict[str, Tuple[ErrorKind, str, int]] = {
    "prompt": (ErrorKind.INVALID_PROMPT, "Prompt", MAX_PROMPT_LENGTH),
    "main_text": (ErrorKind.INVALID_TEXT, "Main text", MAX_MAIN_TEXT_LENGTH),
    "context_text": (ErrorKind.INVALID_TEXT, "Context text", MAX_CONTEXT_TEXT_LENGTH),
}


def sanitize_text(text: Any) -> str:
    """Strip control characters, trim, and normalize line endings to ``\\n``."""
    if not isinstance(text, str):
        return ""
    sanitized = _CONTROL_CHARS.sub("", text).strip()
    return sanitized.replace("\r\n", "\n").replace("\r", "\n")


class RewriteRequest(BaseModel):
    """A validated, sanitized rewrite request.

    Accepts both snake_case and the camelCase keys sent by the spreadsheet
    add-on (``mainText``, ``contextText``, ``requestId``).
    """

    prompt: str = Field(..., description="Rewrite instruction")
    main_text: str = Field(
        ...,
        validation_alias=AliasChoices("main_text", "mainText"),
        description="Text to rewrite",
    )
    context_text: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("context_text", "contextText"),
        description="Optional additional context",
    )
    request_id: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("request_id", "requestId"),
        description="Caller-supplied correlation id",
    )

    model_config = {
        "frozen": True,
        "extra": "ignore",
    }

    @field_validator("prompt", "main_text", "context_text", mode="before")
    @classmethod
    def sanitize(cls, value: Any, info: ValidationInfo) -> Any:
        if value is None:
            return None
        if not isinstance(value, str):
            raise ValueError(f"{_FIELD_RULES[info.field_name][1]} must be a string")
        return sanitize_text(value)

    @field_validator("prompt", "main_text")
    @classmethod
    def validate_required_text(cls, value: str, info: ValidationInfo) -> str:
        _, label, limit = _FIELD_RULES[info.field_name]
        if not value:
            raise ValueError(f"{label} cannot be empty")
        if len(value) > limit:
            raise ValueError(f"{label} cannot exceed {limit} characters")
        return value

    @field_validator("context_text")
    @classmethod
    def validate_context_text(cls, value: Optional[str]) -> Optional[str]:
        if not value:
            return None
        if len(value) > MAX_CONTEXT_TEXT_LENGTH:
            raise ValueError(f"Context text cannot exceed {MAX_CONTEXT_TEXT_LENGTH} characters")
        return value

    @field_validator("request_id", mode="before")
    @classmethod
    def validate_request_id(cls, value: Any) -> Optional[str]:
        if value is None:
            return None
        if not isinstance(value, str):
            raise ValueError("Request ID must be a string")
        return value.strip() or None

    @classmethod
    def from_payload(cls, payload: Any) -> "RewriteRequest":
        """Validate a decoded request body.

        Raises:
            InvalidRequestError: With kind INVALID_PROMPT for prompt problems
                and INVALID_TEXT for everything else
        """
        if not isinstance(payload, Mapping):
            raise InvalidRequestError("Request body must be a valid JSON object")
        try:
            return cls.model_validate(dict(payload))
        except ValidationError as e:
            raise _to_invalid_request(e) from e


def _to_invalid_request(error: ValidationError) -> InvalidRequestError:
    first = error.errors()[0]
    loc = first.get("loc") or ("",)
    field = {"mainText": "main_text", "contextText": "context_text"}.get(str(loc[0]), str(loc[0]))
    kind, label, _ = _FIELD_RULES.get(field, (ErrorKind.INVALID_TEXT, field, 0))

    if first.get("type") == "missing":
        message = f"{label} is required"
    else:
        cause = (first.get("ctx") or {}).get("error")
        message = str(cause) if cause is not None else first.get("msg", "Invalid request")
    return InvalidRequestError(message, kind, field=field)


__all__ = [
    "MAX_CONTEXT_TEXT_LENGTH",
    "MAX_MAIN_TEXT_LENGTH",
    "MAX_PROMPT_LENGTH",
    "RewriteRequest",
    "sanitize_text",
]
