"""ELM327 adapter constants shared across modules."""

from __future__ import annotations

# Adapter error tokens, compared against whitespace-free upper-case text.
ADAPTER_ERROR_TOKENS: tuple[str, ...] = (
    "ERROR",
    "STOPPED",
    "SEARCHING",
    "UNABLE",
    "NODATA",
    "CANERROR",
    "BUSINIT",
    "?",
)

# Shortest response (hex chars) that can carry a service byte, a PID echo and data.
MIN_RESPONSE_LENGTH = 6

# UDS/OBD negative response service identifier.
NEGATIVE_RESPONSE_CODE = "7F"

# Positive response to a ReadDataByIdentifier (0x22) request.
READ_DATA_POSITIVE_RESPONSE = 0x62

# Padding bytes ECUs use to fill ISO-TP frames.
FILLER_BYTE = 0xFF
PADDING_BYTE = 0x55

# Formula marker for array PIDs handled by the multi-frame reassembler.
MULTI_FRAME_FORMULA = "multi-frame"

ELM_RESET_COMMAND = "ATZ"
ELM_BASE_INIT: tuple[str, ...] = ("ATE0", "ATS0")
ELM_POST_INIT: tuple[str, ...] = ("ATAL", "ATCFC1", "ATFCSD300000", "ATFCSM1")
ELM_AUTO_PROTOCOL = "ATSP0"

# Vehicle-specific init strings keyed by PIDs characteristic of that vehicle.
VEHICLE_INIT_SIGNATURES: tuple[tuple[str, frozenset[str], str], ...] = (
    (
        "XPENG G6",
        frozenset({"221109", "220104", "22110A", "221101", "2211091", "2201011"}),
        "ATH1;ATSP6;ATS0;ATM0;ATAT1;ATSH704;ATCRA784;ATFCSH704;ATFCSM1",
    ),
    ("Hyundai/Kia EV", frozenset({"220105", "220101"}), "ATSP6;ATSH7E4;ATFCSH7E4;ATFCSD300000;ATFCSM1"),
    ("Tesla", frozenset({"3902", "39FF"}), "ATSP6;ATSH7DF;ATFCSH7DF;ATFCSM1"),
    ("Nissan Leaf", frozenset({"21014B", "21014C"}), "ATSP6;ATSH79B;ATFCSH79B;ATFCSD300000;ATFCSM1"),
    ("BMW i3", frozenset({"2203DD", "2204D9"}), "ATSP6;ATSH762;ATFCSH762;ATFCSD300000;ATFCSM1"),
)

# Fallback init when every PID is an extended (>= 6 char) identifier.
EXTENDED_PID_INIT = "ATSP6;ATFCSM1"

# Requests used to wake sleeping ECUs (header, request).
ECU_WAKEUP_REQUESTS: tuple[tuple[str, str], ...] = (
    ("704", "221109"),
    ("7E0", "220104"),
)

# Charging power above which a session is classified as DC fast charging (kW).
DC_POWER_THRESHOLD_KW = 11.0
