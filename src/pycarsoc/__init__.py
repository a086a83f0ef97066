"""pycarsoc - Async EV telemetry decoding, source arbitration and charging sessions."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("pycarsoc")
except PackageNotFoundError:
    __version__ = "0+local"
from pycarsoc._transport import AdapterTransport, HttpVehicleInfoTransport, VehicleInfoTransport
from pycarsoc.charging import (
    ChargingSessionTracker,
    SessionEvent,
    SessionEventType,
    TrackerState,
)
from pycarsoc.config import (
    EnvSettings,
    LayeredSettings,
    MappingSettings,
    SettingsProvider,
    TelemetryConfig,
)
from pycarsoc.decoding import decode, decode_sample, evaluate, reassemble
from pycarsoc.engine import TelemetryEngine
from pycarsoc.exceptions import (
    AdapterDisconnectedError,
    AdapterTimeoutError,
    CarSocConfigError,
    CarSocError,
    CarSocTransportError,
    PidTableError,
    ProviderError,
)
from pycarsoc.manager import DataSourceManager
from pycarsoc.models import (
    ChargingSample,
    ChargingSession,
    DecodedSample,
    PidDescriptor,
    PidPriority,
    PidType,
    TelemetrySnapshot,
    dump_pid_table,
    load_pid_table,
)
from pycarsoc.polling import PollScheduler, assemble_snapshot
from pycarsoc.profiles import STANDARD_PIDS, XPENG_G6, VehicleProfile, find_profile, get_profiles
from pycarsoc.providers import (
    CloudProvider,
    DataSource,
    DataSourceProvider,
    MockProvider,
    ObdProvider,
    Subscription,
)
from pycarsoc.sinks import MemorySink, MqttSink, TelemetrySink

__all__ = [
    "__version__",
    "AdapterDisconnectedError",
    "AdapterTimeoutError",
    "AdapterTransport",
    "CarSocConfigError",
    "CarSocError",
    "CarSocTransportError",
    "ChargingSample",
    "ChargingSession",
    "ChargingSessionTracker",
    "CloudProvider",
    "DataSource",
    "DataSourceManager",
    "DataSourceProvider",
    "DecodedSample",
    "EnvSettings",
    "HttpVehicleInfoTransport",
    "LayeredSettings",
    "MappingSettings",
    "MemorySink",
    "MockProvider",
    "MqttSink",
    "ObdProvider",
    "PidDescriptor",
    "PidPriority",
    "PidTableError",
    "PidType",
    "PollScheduler",
    "ProviderError",
    "STANDARD_PIDS",
    "SessionEvent",
    "SessionEventType",
    "SettingsProvider",
    "Subscription",
    "TelemetryConfig",
    "TelemetryEngine",
    "TelemetrySink",
    "TelemetrySnapshot",
    "TrackerState",
    "VehicleInfoTransport",
    "VehicleProfile",
    "XPENG_G6",
    "assemble_snapshot",
    "decode",
    "decode_sample",
    "dump_pid_table",
    "evaluate",
    "find_profile",
    "get_profiles",
    "load_pid_table",
    "reassemble",
]
