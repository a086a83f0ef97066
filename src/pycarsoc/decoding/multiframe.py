"""ISO-TP multi-frame reassembly for per-cell array PIDs.

A long response arrives as several frames, each prefixed with the
replying ECU's CAN id::

    784 10E3 62 1122 C7C8C7      first frame: 13-char header
    784 21 C8C7C8C7C8C8C8        consecutive frame: 5-char header

Data bytes of all frames are concatenated in frame order.  ``0xFF``
padding is skipped everywhere; ``0x55`` padding only in consecutive
frames, so a first-frame ``0x55`` (3.7 V) is kept as a cell value.

Voltage scale is ``byte * 0.02 + 2.0``.  Note that ``0xB9`` maps to
5.7 V with this scale and is therefore discarded by the validity band;
the scale is kept as used by the vehicles' BMS profiles.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Sequence

from pycarsoc._constants import FILLER_BYTE, PADDING_BYTE
from pycarsoc.decoding._hex import is_hex_pair, leading_can_id, normalize_response

_logger = logging.getLogger(__name__)

FIRST_FRAME_HEADER_LENGTH = 13
CONSECUTIVE_FRAME_HEADER_LENGTH = 5

CELL_VOLTAGE_RANGE = (2.5, 4.5)
CELL_TEMPERATURE_RANGE = (-40.0, 80.0)

_FIRST_FRAME_SKIP = frozenset({FILLER_BYTE})
_CONSECUTIVE_FRAME_SKIP = frozenset({FILLER_BYTE, PADDING_BYTE})


def split_frames(text: str, ecu_id: str) -> list[str]:
    """Split normalized *text* into frames, each starting with *ecu_id*.

    Anything before the first occurrence of the id is ignored.
    """
    frames: list[str] = []
    start = text.find(ecu_id)
    while start >= 0:
        following = text.find(ecu_id, start + len(ecu_id))
        end = following if following > 0 else len(text)
        frames.append(text[start:end])
        start = following
    return frames


def _frame_bytes(frame: str, header_length: int, skip: frozenset[int]) -> list[int]:
    data: list[int] = []
    for index in range(header_length, len(frame) - 1, 2):
        pair = frame[index : index + 2]
        if not is_hex_pair(pair):
            continue
        value = int(pair, 16)
        if value not in skip:
            data.append(value)
    return data


def reassemble(response: str, ecu_id: str | None = None) -> list[int]:
    """Return the concatenated data bytes of a multi-frame *response*.

    *ecu_id* defaults to the CAN id the response starts with; without
    one the response cannot be split and an empty list is returned.
    """
    text = normalize_response(response)
    ecu = (ecu_id or leading_can_id(text) or "").upper()
    if not ecu:
        return []

    frames = split_frames(text, ecu)
    data: list[int] = []
    for position, frame in enumerate(frames):
        if position == 0:
            if len(frame) >= FIRST_FRAME_HEADER_LENGTH:
                data.extend(_frame_bytes(frame, FIRST_FRAME_HEADER_LENGTH, _FIRST_FRAME_SKIP))
        elif len(frame) >= CONSECUTIVE_FRAME_HEADER_LENGTH:
            data.extend(_frame_bytes(frame, CONSECUTIVE_FRAME_HEADER_LENGTH, _CONSECUTIVE_FRAME_SKIP))
    _logger.debug("Reassembled %d data bytes from %d frames (ecu=%s)", len(data), len(frames), ecu)
    return data


def voltage_from_byte(value: int) -> float:
    return round(value * 0.02 + 2.0, 3)


def temperature_from_byte(value: int) -> float:
    return float(value - 40)


def _within(value: float, bounds: tuple[float, float]) -> bool:
    return bounds[0] <= value <= bounds[1]


def cell_voltages(response: str, ecu_id: str | None = None) -> list[float]:
    """Per-cell voltages (V) inside the plausible band, in frame order."""
    scaled = (voltage_from_byte(b) for b in reassemble(response, ecu_id))
    return [v for v in scaled if _within(v, CELL_VOLTAGE_RANGE)]


def cell_temperatures(response: str, ecu_id: str | None = None) -> list[float]:
    """Per-sensor temperatures (°C) inside the plausible band, in frame order."""
    scaled = (temperature_from_byte(b) for b in reassemble(response, ecu_id))
    return [t for t in scaled if _within(t, CELL_TEMPERATURE_RANGE)]


def average(values: Sequence[float]) -> float:
    """Mean of *values*; NaN when there are none."""
    if not values:
        return math.nan
    return sum(values) / len(values)
