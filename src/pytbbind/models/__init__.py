"""Public models for pytbbind."""

from pytbbind.models.binding import ViewBinding
from pytbbind.models.calculation import CalculationSpec, Calculator, sum_inputs
from pytbbind.models.entity import DataSource, EntityRef
from pytbbind.models.push import PushUpdate
from pytbbind.models.scope import ReadScope

__all__ = [
    "CalculationSpec",
    "Calculator",
    "DataSource",
    "EntityRef",
    "PushUpdate",
    "ReadScope",
    "ViewBinding",
    "sum_inputs",
]
