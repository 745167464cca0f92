"""Push channel payloads."""

from __future__ import annotations

from typing import Any

from pydantic import Field, field_validator

from pytbbind.models._base import TbBaseModel


class PushUpdate(TbBaseModel):
    """One inbound websocket frame for a subscription."""

    subscription_id: int | None = None
    error_code: int = 0
    error_msg: str | None = None
    data: dict[str, Any] = Field(default_factory=dict)

    @field_validator("error_code", mode="before")
    @classmethod
    def _default_error_code(cls, value: Any) -> Any:
        return 0 if value is None else value

    @field_validator("data", mode="before")
    @classmethod
    def _default_data(cls, value: Any) -> Any:
        return value if isinstance(value, dict) else {}

    @property
    def is_error(self) -> bool:
        return self.error_code != 0
