"""Byte-stream decoder: one adapter response + one PID → one physical value.

:func:`decode` never raises.  Adapter and protocol errors (error tokens,
too-short text, negative responses) decode to NaN; built-in rules that
receive too few bytes decode to ``0.0``.  The two outcomes are distinct
on purpose: NaN means "the ECU did not answer", ``0.0`` means "the
answer was shorter than the rule expects".
"""

from __future__ import annotations

import logging
import math
import re

from pycarsoc._constants import (
    ADAPTER_ERROR_TOKENS,
    MIN_RESPONSE_LENGTH,
    NEGATIVE_RESPONSE_CODE,
    READ_DATA_POSITIVE_RESPONSE,
)
from pycarsoc.decoding import multiframe
from pycarsoc.decoding._hex import CAN_ID_RE, normalize_response, parse_hex_bytes
from pycarsoc.decoding.formula import bind, evaluate
from pycarsoc.models.pid import PidDescriptor, PidType
from pycarsoc.models.telemetry import DecodedSample

_logger = logging.getLogger(__name__)

_CAN_ID_LENGTH = 3
# Header detection needs the id plus at least two more nibbles.
_MIN_HEADERED_LENGTH = 7
# Byte offset of the first data byte in a classic ``41 <pid> <data>`` reply.
_DATA_OFFSET = 2

_BYTE_RANGE_RE = re.compile(r"\[B(\d+):B(\d+)\]")
_BYTE_INDEX_RE = re.compile(r"B(\d+)")
_SYMBOLS = ("A", "B", "C", "D")


class _Frame:
    """A normalized response split into header flag and data bytes."""

    __slots__ = ("data", "has_header", "text")

    def __init__(self, text: str, has_header: bool, data: list[int]) -> None:
        self.text = text
        self.has_header = has_header
        self.data = data


def response_address(header: str) -> str:
    """CAN id an ECU replies from for request *header*.

    ``7E0``-``7EF`` reply at ``+0x08`` (``7E0`` → ``7E8``); any other
    id replies at ``+0x80`` (``704`` → ``784``).  Unparsable headers
    are returned unchanged.
    """
    try:
        request_id = int(header, 16)
    except ValueError:
        return header
    offset = 0x08 if (request_id & 0x7F0) == 0x7E0 else 0x80
    return format(request_id + offset, "X")


def _adapter_error(text: str) -> str | None:
    for token in ADAPTER_ERROR_TOKENS:
        if token in text:
            return token
    if len(text) < MIN_RESPONSE_LENGTH:
        return "short"
    return None


def _frame(response: str) -> _Frame | None:
    """Normalize *response*; ``None`` for adapter errors and negative responses."""
    text = normalize_response(response)
    error = _adapter_error(text)
    if error is not None:
        _logger.debug("Adapter error (%s) in response %r", error, response)
        return None

    has_header = len(text) >= _MIN_HEADERED_LENGTH and CAN_ID_RE.match(text) is not None
    # Service byte follows the id and the length byte, or just the length byte.
    service = text[5:7] if has_header else text[2:4]
    if service == NEGATIVE_RESPONSE_CODE:
        _logger.debug("Negative response %r", response)
        return None

    body = text[_CAN_ID_LENGTH:] if has_header else text
    if len(body) % 2:
        body = body[:-1]
    return _Frame(text, has_header, parse_hex_bytes(body))


def _big_endian(data: list[int], start: int, length: int) -> int | None:
    if start < 0 or start + length > len(data):
        return None
    value = 0
    for byte in data[start : start + length]:
        value = (value << 8) | byte
    return value


def uses_byte_index_notation(formula: str) -> bool:
    """``B<i>`` / ``[B<i>:B<j>]`` formulas address absolute byte positions."""
    return "[B" in formula or _BYTE_INDEX_RE.search(formula) is not None


def _bind_byte_indices(formula: str, data: list[int]) -> str:
    def _range(match: re.Match[str]) -> str:
        start, end = int(match.group(1)), int(match.group(2))
        if start >= len(data) or end >= len(data):
            return "0"
        value = _big_endian(data, start, end - start + 1)
        return str(value if value is not None else 0)

    def _index(match: re.Match[str]) -> str:
        index = int(match.group(1))
        return str(data[index]) if index < len(data) else "0"

    return _BYTE_INDEX_RE.sub(_index, _BYTE_RANGE_RE.sub(_range, formula))


def _symbolic_payload(data: list[int], pid: PidDescriptor) -> list[int]:
    """Locate the A/B/C/D payload.

    After a ``0x62`` ReadDataByIdentifier marker (optionally preceded by
    an ISO-TP length byte) the payload follows the identifier echo;
    otherwise it starts at the fixed two-byte offset.
    """
    for marker_index in (0, 1):
        if marker_index < len(data) and data[marker_index] == READ_DATA_POSITIVE_RESPONSE:
            echo = max((len(pid.pid) - 2) // 2, 0)
            return data[marker_index + 1 + echo :]
    return data[_DATA_OFFSET:]


def _evaluate_formula(formula: str, frame: _Frame, pid: PidDescriptor) -> float:
    if uses_byte_index_notation(formula):
        return evaluate(_bind_byte_indices(formula, frame.data))
    payload = _symbolic_payload(frame.data, pid)
    variables = {symbol: float(value) for symbol, value in zip(_SYMBOLS, payload, strict=False)}
    return evaluate(bind(formula, variables))


def _builtin(pid_type: PidType, data: list[int]) -> float:
    match pid_type:
        case PidType.STATE_OF_CHARGE:
            if len(data) <= _DATA_OFFSET:
                return 0.0
            return min(max(data[_DATA_OFFSET] * 100.0 / 255.0, 0.0), 100.0)
        case PidType.BATTERY_VOLTAGE:
            value = _big_endian(data, _DATA_OFFSET, 2)
            return 0.0 if value is None else value * 0.001
        case PidType.ODOMETER:
            value = _big_endian(data, _DATA_OFFSET, 4)
            return 0.0 if value is None else value * 0.1
        case PidType.CUMULATIVE_CHARGE | PidType.CUMULATIVE_DISCHARGE:
            value = _big_endian(data, len(data) - 4, 4)
            return 0.0 if value is None else float(value)
        case _:
            # speed, custom
            if len(data) <= _DATA_OFFSET:
                return 0.0
            return float(data[_DATA_OFFSET])


def decode_sample(response: str | None, pid: PidDescriptor) -> DecodedSample:
    """Decode *response* for *pid*, keeping per-element values for array PIDs."""
    if not isinstance(response, str):
        return DecodedSample.failed(pid.name)
    frame = _frame(response)
    if frame is None:
        return DecodedSample.failed(pid.name)

    formula = pid.effective_formula
    if formula is not None:
        value = _evaluate_formula(formula, frame, pid)
        _logger.debug("Decoded %s via %r = %s", pid.name, formula, value)
        return DecodedSample(pid.name, value)

    if pid.type is PidType.CELL_VOLTAGES:
        values = multiframe.cell_voltages(frame.text)
        return DecodedSample(pid.name, multiframe.average(values), tuple(values))
    if pid.type is PidType.CELL_TEMPERATURES:
        values = multiframe.cell_temperatures(frame.text)
        return DecodedSample(pid.name, multiframe.average(values), tuple(values))

    value = _builtin(pid.type, frame.data)
    _logger.debug("Decoded %s via built-in %s rule = %s", pid.name, pid.type.value, value)
    return DecodedSample(pid.name, value)


def decode(response: str | None, pid: PidDescriptor) -> float:
    """Decode *response* for *pid*: a finite number, or NaN on adapter/protocol error."""
    try:
        value = decode_sample(response, pid).value
    except (ValueError, IndexError, OverflowError) as exc:
        _logger.debug("Decode of %s failed for %r: %s", pid.name, response, exc)
        return math.nan
    return value if not math.isinf(value) else math.nan
