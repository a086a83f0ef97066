"""Live telemetry providers."""

from pycarsoc.providers.base import DataSource, DataSourceProvider, Subscription
from pycarsoc.providers.cloud import CloudProvider
from pycarsoc.providers.mock import MockProvider
from pycarsoc.providers.obd import ObdProvider, detect_vehicle_init

__all__ = [
    "CloudProvider",
    "DataSource",
    "DataSourceProvider",
    "MockProvider",
    "ObdProvider",
    "Subscription",
    "detect_vehicle_init",
]
