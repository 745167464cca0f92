"""Derived-value calculation definitions."""

from __future__ import annotations

import dataclasses
from collections.abc import Mapping
from typing import Any, Protocol

from pytbbind.models.scope import ReadScope


class Calculator(Protocol):
    """Pure value transform from named inputs to one result.

    Inputs that could not be read are passed as ``None``. Raise to reject
    the inputs; returning ``None`` also skips the publish.
    """

    def __call__(self, inputs: Mapping[str, Any]) -> Any: ...


def sum_inputs(inputs: Mapping[str, Any]) -> float:
    """Add every input as a float; refuses to sum unknown inputs."""
    missing = [key for key, value in inputs.items() if value is None]
    if missing:
        raise ValueError(f"missing inputs: {', '.join(missing)}")
    return sum(float(value) for value in inputs.values())


@dataclasses.dataclass(frozen=True)
class CalculationSpec:
    """A derived value computed from several live inputs of one device.

    Parameters
    ----------
    name : str
        Key the result is published under.
    device : str
        Device whose keys are read and to which the result is written.
    inputs : tuple of str
        Input keys, read in this order.
    compute : Calculator
        Strategy producing the result from ``{input_key: value}``.
    scope : ReadScope
        Scope the inputs are read from.
    interval : float
        Seconds between ticks.
    """

    name: str
    device: str
    inputs: tuple[str, ...]
    compute: Calculator
    scope: ReadScope = ReadScope.TELEMETRY
    interval: float = 5.0

    def __post_init__(self) -> None:
        # Ordered set semantics: keep first occurrence of each input.
        object.__setattr__(self, "inputs", tuple(dict.fromkeys(self.inputs)))
        object.__setattr__(self, "scope", ReadScope.parse(self.scope))
        if self.interval <= 0:
            raise ValueError("interval must be positive")
