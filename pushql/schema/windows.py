"""Pydantic models for windowed aggregation specs.

Three window strategies are supported, discriminated by ``type``::

    TumblingWindow(size=Duration.of(timedelta(minutes=5)))
    HoppingWindow(size=Duration(value=30, unit="SECONDS"),
                  advance_by=Duration(value=10, unit="SECONDS"))
    SessionWindow(gap=Duration(value=1, unit="HOURS"))

The models only hold data; consistency checks (positive durations, advance
not larger than size, retention not smaller than size) are applied when the
``WINDOW`` clause is compiled.
"""
from __future__ import annotations

from datetime import timedelta
from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

_FROZEN = ConfigDict(extra="forbid", frozen=True)


class TimeUnit(str, Enum):
    """ksqlDB time units, largest last."""

    MILLISECONDS = "MILLISECONDS"
    SECONDS = "SECONDS"
    MINUTES = "MINUTES"
    HOURS = "HOURS"
    DAYS = "DAYS"


_UNIT_MILLIS: dict[TimeUnit, int] = {
    TimeUnit.MILLISECONDS: 1,
    TimeUnit.SECONDS: 1_000,
    TimeUnit.MINUTES: 60_000,
    TimeUnit.HOURS: 3_600_000,
    TimeUnit.DAYS: 86_400_000,
}


class Duration(BaseModel):
    """A whole number of time units.

    Attributes:
        value: Number of units.
        unit: The time unit.
    """

    model_config = _FROZEN

    value: int
    unit: TimeUnit = TimeUnit.SECONDS

    @classmethod
    def of(cls, delta: timedelta) -> Duration:
        """Convert ``delta`` using the largest unit that divides it exactly."""
        millis = (delta.days * 86_400 + delta.seconds) * 1_000 + delta.microseconds // 1_000
        for unit in reversed(TimeUnit):
            factor = _UNIT_MILLIS[unit]
            if millis % factor == 0:
                return cls(value=millis // factor, unit=unit)
        return cls(value=millis, unit=TimeUnit.MILLISECONDS)

    @property
    def milliseconds(self) -> int:
        return self.value * _UNIT_MILLIS[self.unit]

    def to_ksql(self) -> str:
        return f"{self.value} {self.unit.value}"


class TumblingWindow(BaseModel):
    """Fixed-size, non-overlapping windows."""

    model_config = _FROZEN

    type: Literal["TUMBLING"] = "TUMBLING"
    size: Duration
    retention: Duration | None = None
    grace_period: Duration | None = None


class HoppingWindow(BaseModel):
    """Fixed-size windows advancing by ``advance_by`` (may overlap)."""

    model_config = _FROZEN

    type: Literal["HOPPING"] = "HOPPING"
    size: Duration
    advance_by: Duration
    retention: Duration | None = None
    grace_period: Duration | None = None


class SessionWindow(BaseModel):
    """Activity windows closed by an inactivity ``gap``."""

    model_config = _FROZEN

    type: Literal["SESSION"] = "SESSION"
    gap: Duration
    retention: Duration | None = None
    grace_period: Duration | None = None


WindowSpec = Annotated[
    Union[TumblingWindow, HoppingWindow, SessionWindow],
    Field(discriminator="type"),
]
