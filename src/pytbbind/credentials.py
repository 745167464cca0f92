"""Opaque bearer credential providers.

A credential provider is any zero-argument callable returning a token or
``None``. It is consulted on every direct REST call, so a provider backed
by a refreshing session always hands out its current token.
"""

from __future__ import annotations

import os
from collections.abc import Callable

CredentialProvider = Callable[[], str | None]


class StaticCredentialProvider:
    """Always returns the same token."""

    def __init__(self, token: str | None) -> None:
        self._token = token.strip() if token else None

    def __call__(self) -> str | None:
        return self._token or None


class EnvCredentialProvider:
    """Reads the token from an environment variable at call time."""

    def __init__(self, variable: str = "TB_TOKEN") -> None:
        self._variable = variable

    def __call__(self) -> str | None:
        value = os.environ.get(self._variable, "").strip()
        return value or None
