"""Base model shared by pycarsoc value types.

Every model inherits from :class:`CarSocBaseModel` which provides:

* ``alias_generator=to_camel`` so camelCase wire keys map
  automatically to snake_case fields.
* A ``model_validator(mode="before")`` that strips "not available"
  sentinels (``""``, ``"--"``, NaN) so the field default (``None``)
  is used.  An unknown value is never turned into ``0``.
"""

from __future__ import annotations

import math
from datetime import UTC, datetime
from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, ConfigDict, model_validator
from pydantic.alias_generators import to_camel

# Sentinel strings meaning "not available".
_SENTINELS = frozenset({"", "--", "NaN", "nan"})

# Threshold to distinguish seconds from milliseconds.
_MS_THRESHOLD = 1_000_000_000_000


def parse_timestamp(value: Any) -> datetime | None:
    """Convert an ISO-8601 string or epoch number (seconds **or** ms) to an aware datetime.

    Naive datetimes are assumed to be UTC.  Returns ``None`` for ``None``.
    """
    if value is None:
        return value
    if isinstance(value, datetime):
        return value if value.tzinfo is not None else value.replace(tzinfo=UTC)
    if isinstance(value, str):
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        return parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=UTC)
    ts = float(value)
    if ts >= _MS_THRESHOLD:
        ts = ts / 1000
    return datetime.fromtimestamp(ts, tz=UTC)


def to_epoch_ms(value: datetime) -> int:
    return int(round(value.timestamp() * 1000))


Timestamp = Annotated[datetime, BeforeValidator(parse_timestamp)]
"""Annotated type accepting ISO strings or epoch ints (seconds or ms)."""

OptionalTimestamp = Annotated[datetime | None, BeforeValidator(parse_timestamp)]


def is_unknown(value: Any) -> bool:
    """Return ``True`` for ``None``, sentinel strings and NaN."""
    if value is None:
        return True
    if isinstance(value, str) and value.strip() in _SENTINELS:
        return True
    return isinstance(value, float) and math.isnan(value)


class CarSocBaseModel(BaseModel):
    """Base for pycarsoc value models.

    Handles:
    * camelCase → snake_case via ``alias_generator=to_camel``
    * sentinel values (``""``, ``"--"``, NaN) → dropped so the
      field default is used instead
    """

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
        alias_generator=to_camel,
    )

    @staticmethod
    def _clean_dict(values: dict[str, Any]) -> dict[str, Any]:
        """Drop sentinel values from *values* (top level only)."""
        return {key: value for key, value in values.items() if not is_unknown(value)}

    @model_validator(mode="before")
    @classmethod
    def _clean_sentinels(cls, values: Any) -> Any:
        if not isinstance(values, dict):
            return values
        return CarSocBaseModel._clean_dict(values)
