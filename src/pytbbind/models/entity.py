"""Entity references and host binding entries."""

from __future__ import annotations

from typing import Any

from pydantic import field_validator, model_validator

from pytbbind._constants import DEFAULT_ENTITY_TYPE
from pytbbind.models._base import TbBaseModel

# Host fields that may carry the display name, in priority order.
_NAME_KEYS = ("entityName", "entity_name", "name", "label", "display_name")


class EntityRef(TbBaseModel):
    """Backend identity of a device or asset."""

    id: str
    """Entity id (usually a UUID)."""
    entity_type: str = DEFAULT_ENTITY_TYPE
    """Entity type (e.g. ``"DEVICE"``, ``"ASSET"``)."""

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> Any:
        if isinstance(value, dict):
            value = value.get("id")
        if value is None:
            raise ValueError("entity id is required")
        return str(value)


class DataSource(TbBaseModel):
    """One entry of the host's binding list.

    Hosts are inconsistent about where the display name lives and whether
    ``entityId`` is a plain string or a nested ``{id, entityType}`` object;
    both are accepted.
    """

    display_name: str | None = None
    entity_id: str | None = None
    entity_type: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _flatten_host_entry(cls, values: Any) -> Any:
        if not isinstance(values, dict):
            return values

        display_name = next((values[k] for k in _NAME_KEYS if values.get(k)), None)
        entity_type = values.get("entityType") or values.get("entity_type")
        raw_id = values.get("entityId", values.get("entity_id"))
        if isinstance(raw_id, dict):
            entity_type = entity_type or raw_id.get("entityType")
            raw_id = raw_id.get("id")

        return {
            "display_name": None if display_name is None else str(display_name),
            "entity_id": None if raw_id is None else str(raw_id),
            "entity_type": entity_type,
        }

    def to_entity_ref(self) -> EntityRef | None:
        """Return the referenced entity, or ``None`` when the entry has no id."""
        if not self.entity_id:
            return None
        return EntityRef(id=self.entity_id, entity_type=self.entity_type or DEFAULT_ENTITY_TYPE)
