"""Custom exception hierarchy for pytbbind."""

from __future__ import annotations


class TbBindError(Exception):
    """Base exception for all pytbbind errors."""


class TbConfigError(TbBindError):
    """Invalid or missing configuration."""


class TbTransportError(TbBindError):
    """HTTP-level failure (network, non-2xx, invalid JSON)."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        endpoint: str = "",
    ) -> None:
        self.status_code = status_code
        self.endpoint = endpoint
        super().__init__(message)


class TbAuthenticationError(TbTransportError):
    """Backend rejected the credential (HTTP 401/403)."""


class TbEntityNotFoundError(TbBindError):
    """No host binding matches the requested device name."""

    def __init__(self, device: str) -> None:
        self.device = device
        super().__init__(f"No entity bound to device {device!r}")


class TbValueNotFoundError(TbBindError):
    """The response did not carry a value for the requested key.

    Raised when normalisation of a read response yields nothing, so that
    shape mismatches are handled exactly like read failures.
    """

    def __init__(self, key: str, *, endpoint: str = "") -> None:
        self.key = key
        self.endpoint = endpoint
        super().__init__(f"No value for key {key!r} in response from {endpoint or 'backend'}")


class TbPushError(TbBindError):
    """Push subscription could not be established or was rejected."""
