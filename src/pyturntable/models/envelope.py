"""Reply envelope shared by every chat command."""

from __future__ import annotations

from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator


class ResponseEnvelope(BaseModel):
    """Outcome fields of a ``response_received`` message."""

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
    )

    msgid: int | None = None
    """Id of the command this reply answers."""

    success: bool = False
    """Whether the service executed the command."""

    error: str | None = Field(default=None, validation_alias=AliasChoices("error", "err"))
    """Failure reason (``err`` on some commands, ``error`` on others)."""

    raw: dict[str, Any] = Field(default_factory=dict)
    """Full reply dict."""

    @model_validator(mode="before")
    @classmethod
    def _ensure_raw(cls, values: Any) -> Any:
        if not isinstance(values, dict):
            return values
        merged = dict(values)
        merged.setdefault("raw", values)
        return merged

    @field_validator("success", mode="before")
    @classmethod
    def _coerce_success(cls, value: Any) -> bool:
        return bool(value)

    @field_validator("error", mode="before")
    @classmethod
    def _coerce_error(cls, value: Any) -> str | None:
        if value is None or value == "":
            return None
        return str(value)
