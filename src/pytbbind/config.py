"""Client configuration for pytbbind."""

from __future__ import annotations

import dataclasses
import os
from enum import StrEnum
from typing import Any

from pytbbind._constants import (
    BASE_URL,
    DEFAULT_ATTRIBUTE_SCOPE,
    INITIAL_THROTTLE_S,
    POLL_INTERVAL_S,
    REFRESH_THROTTLE_S,
    REQUEST_TIMEOUT_S,
)
from pytbbind.exceptions import TbConfigError


class ThrottlePolicy(StrEnum):
    """What happens to a caller that arrives inside a key's throttle window.

    ``DEFER`` queues the caller and schedules a single fetch for the end of
    the window. ``SKIP`` only queues the caller; it is answered by whichever
    fetch for that key happens next (or with ``None`` on teardown).
    """

    DEFER = "defer"
    SKIP = "skip"


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


def _env_float(env_key: str, value: str) -> float:
    try:
        return float(value)
    except ValueError as exc:
        raise TbConfigError(f"{env_key} must be a number, got {value!r}") from exc


@dataclasses.dataclass(frozen=True)
class BindingConfig:
    """Client configuration.

    Parameters
    ----------
    base_url : str
        Backend base URL, without a trailing slash.
    device_name : str
        Default device for view bindings that do not name their own.
    token : str or None
        Bearer token for direct REST calls when no credential provider or
        host client is supplied.
    poll_interval : float
        Seconds between poll-driven cache invalidations.
    initial_throttle : float
        Minimum seconds between fetches of a key that has no cached value.
    refresh_throttle : float
        Minimum seconds between fetches of a key that has a cached value.
    throttle_policy : ThrottlePolicy
        How callers arriving inside a throttle window are answered.
    push_enabled : bool
        Subscribe to backend push notifications when a subscriber is available.
    attribute_scope : str
        Attribute namespace used for attribute reads.
    request_timeout : float
        Total timeout in seconds for direct REST calls.
    """

    base_url: str = BASE_URL
    device_name: str = ""
    token: str | None = None
    poll_interval: float = POLL_INTERVAL_S
    initial_throttle: float = INITIAL_THROTTLE_S
    refresh_throttle: float = REFRESH_THROTTLE_S
    throttle_policy: ThrottlePolicy = ThrottlePolicy.DEFER
    push_enabled: bool = True
    attribute_scope: str = DEFAULT_ATTRIBUTE_SCOPE
    request_timeout: float = REQUEST_TIMEOUT_S

    def __post_init__(self) -> None:
        for name in ("poll_interval", "initial_throttle", "refresh_throttle", "request_timeout"):
            if getattr(self, name) < 0:
                raise TbConfigError(f"{name} must not be negative")
        if self.poll_interval == 0:
            raise TbConfigError("poll_interval must be positive")
        object.__setattr__(self, "base_url", self.base_url.rstrip("/"))
        try:
            policy = ThrottlePolicy(self.throttle_policy)
        except ValueError as exc:
            raise TbConfigError(
                f"throttle_policy must be 'defer' or 'skip', got {self.throttle_policy!r}"
            ) from exc
        object.__setattr__(self, "throttle_policy", policy)

    @classmethod
    def from_env(cls, **overrides: Any) -> BindingConfig:
        """Create configuration from environment variables.

        Reads optional ``TB_*`` variables. Explicit keyword arguments
        override environment values.

        Parameters
        ----------
        **overrides
            Explicit field values that take precedence over env vars.

        Returns
        -------
        BindingConfig
            Populated configuration.
        """
        env = os.environ

        _ENV_CONFIG_MAP = {
            "TB_BASE_URL": "base_url",
            "TB_DEVICE_NAME": "device_name",
            "TB_TOKEN": "token",
            "TB_ATTRIBUTE_SCOPE": "attribute_scope",
        }
        config_kwargs: dict[str, Any] = {}
        for env_key, field_name in _ENV_CONFIG_MAP.items():
            val = env.get(env_key)
            if val is not None:
                config_kwargs[field_name] = val

        _ENV_FLOAT_MAP = {
            "TB_POLL_INTERVAL": "poll_interval",
            "TB_INITIAL_THROTTLE": "initial_throttle",
            "TB_REFRESH_THROTTLE": "refresh_throttle",
            "TB_REQUEST_TIMEOUT": "request_timeout",
        }
        for env_key, field_name in _ENV_FLOAT_MAP.items():
            val = env.get(env_key)
            if val is not None and field_name not in overrides:
                config_kwargs[field_name] = _env_float(env_key, val)

        policy_env = env.get("TB_THROTTLE_POLICY")
        if policy_env is not None and "throttle_policy" not in overrides:
            try:
                config_kwargs["throttle_policy"] = ThrottlePolicy(policy_env.strip().lower())
            except ValueError as exc:
                raise TbConfigError(f"TB_THROTTLE_POLICY must be 'defer' or 'skip', got {policy_env!r}") from exc

        if "push_enabled" not in overrides:
            config_kwargs["push_enabled"] = _env_bool(env.get("TB_PUSH_ENABLED"), True)

        config_kwargs.update(overrides)

        return cls(**config_kwargs)
