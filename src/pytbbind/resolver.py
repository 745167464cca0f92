"""Device name to backend entity resolution."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from typing import Any

from pydantic import ValidationError

from pytbbind.ingestion.normalize import normalize_name
from pytbbind.models.entity import DataSource, EntityRef

_logger = logging.getLogger(__name__)

BindingEntry = DataSource | Mapping[str, Any]
BindingList = Iterable[BindingEntry]
BindingProvider = Callable[[], BindingList | None]


def _as_data_source(entry: Any) -> DataSource | None:
    if isinstance(entry, DataSource):
        return entry
    if not isinstance(entry, Mapping):
        return None
    try:
        return DataSource.model_validate(dict(entry))
    except ValidationError:
        _logger.debug("Skipping malformed binding entry", exc_info=True)
        return None


class EntityResolver:
    """Look up a device in the host's current binding list.

    *bindings* is either a fixed list or a callable returning the host's
    current list; the callable is invoked on every lookup. Results are
    never cached.
    """

    def __init__(self, bindings: BindingList | BindingProvider | None) -> None:
        self._bindings = bindings

    def _current(self) -> BindingList | None:
        if not callable(self._bindings):
            return self._bindings
        try:
            entries = self._bindings()
            return None if entries is None else list(entries)
        except Exception:
            _logger.debug("Binding provider failed; treating bindings as unavailable", exc_info=True)
            return None

    def resolve(self, device_name: str | None) -> EntityRef | None:
        """Return the entity bound to *device_name*, or ``None``."""
        wanted = normalize_name(device_name)
        if not wanted:
            return None
        entries = self._current()
        if entries is None:
            return None
        for entry in entries:
            source = _as_data_source(entry)
            if source is None or not source.display_name:
                continue
            if normalize_name(source.display_name) != wanted:
                continue
            ref = source.to_entity_ref()
            if ref is not None:
                return ref
        return None
