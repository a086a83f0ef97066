"""Adapter response decoding: formulas, byte rules and multi-frame reassembly."""

from pycarsoc.decoding.decoder import decode, decode_sample, response_address
from pycarsoc.decoding.formula import evaluate
from pycarsoc.decoding.multiframe import cell_temperatures, cell_voltages, reassemble

__all__ = [
    "cell_temperatures",
    "cell_voltages",
    "decode",
    "decode_sample",
    "evaluate",
    "reassemble",
    "response_address",
]
