"""pytbbind - Async data binding for live telemetry dashboards."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("pytbbind")
except PackageNotFoundError:
    __version__ = "0+local"
from pytbbind.cache import ReadThroughCache
from pytbbind.client import BindingClient, BindingContext
from pytbbind.config import BindingConfig, ThrottlePolicy
from pytbbind.credentials import EnvCredentialProvider, StaticCredentialProvider
from pytbbind.exceptions import (
    TbAuthenticationError,
    TbBindError,
    TbConfigError,
    TbEntityNotFoundError,
    TbPushError,
    TbTransportError,
    TbValueNotFoundError,
)
from pytbbind.ingestion.normalize import extract_from_response, extract_scalar, to_boolean_status
from pytbbind.models import (
    CalculationSpec,
    Calculator,
    DataSource,
    EntityRef,
    ReadScope,
    ViewBinding,
    sum_inputs,
)
from pytbbind.pipeline import DerivedValuePipeline
from pytbbind.push import PushSubscriber, PushSubscription, WebSocketPushSubscriber
from pytbbind.resolver import EntityResolver
from pytbbind.view import ViewSink, fixed_decimals

__all__ = [
    "__version__",
    "BindingClient",
    "BindingConfig",
    "BindingContext",
    "CalculationSpec",
    "Calculator",
    "DataSource",
    "DerivedValuePipeline",
    "EntityRef",
    "EntityResolver",
    "EnvCredentialProvider",
    "PushSubscriber",
    "PushSubscription",
    "ReadScope",
    "ReadThroughCache",
    "StaticCredentialProvider",
    "TbAuthenticationError",
    "TbBindError",
    "TbConfigError",
    "TbEntityNotFoundError",
    "TbPushError",
    "TbTransportError",
    "TbValueNotFoundError",
    "ThrottlePolicy",
    "ViewBinding",
    "ViewSink",
    "WebSocketPushSubscriber",
    "extract_from_response",
    "extract_scalar",
    "fixed_decimals",
    "sum_inputs",
    "to_boolean_status",
]
