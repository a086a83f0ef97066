"""Adapter text helpers shared by the decoder and the reassembler."""

from __future__ import annotations

import re

_HEX_PAIR_RE = re.compile(r"^[0-9A-F]{2}$")
CAN_ID_RE = re.compile(r"^7[0-9A-F]{2}")


def normalize_response(response: str) -> str:
    """Strip whitespace and ``>`` prompts, uppercase."""
    return "".join(response.split()).replace(">", "").upper()


def is_hex_pair(pair: str) -> bool:
    return bool(_HEX_PAIR_RE.match(pair))


def parse_hex_bytes(text: str) -> list[int]:
    """Parse *text* two characters at a time, stopping at the first non-hex pair.

    A trailing odd nibble is ignored.
    """
    data: list[int] = []
    for index in range(0, len(text) - len(text) % 2, 2):
        pair = text[index : index + 2]
        if not is_hex_pair(pair):
            break
        data.append(int(pair, 16))
    return data


def leading_can_id(text: str) -> str | None:
    match = CAN_ID_RE.match(text)
    return match.group(0) if match else None
