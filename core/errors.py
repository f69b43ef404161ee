"""Per-location failures of a poll cycle.

Each message ends up verbatim as an alert field, so keep them readable.
"""

from __future__ import annotations


class CollectionError(Exception):
    """A location could not be collected during a poll cycle."""


class ForecastRequestError(CollectionError):
    def __init__(self, message: str):
        super().__init__(f"forecast request failed, {message}")


class ForecastParseError(CollectionError):
    def __init__(self, message: str, *, body: str = ""):
        super().__init__(f"forecast response could not be parsed, {message}")
        self.body = body


class TimestampParseError(CollectionError):
    def __init__(self, value: str, message: str):
        super().__init__(f"parsing `from` timestamp {value!r} failed, {message}")
        self.value = value


class PointWriteError(CollectionError):
    def __init__(self, message: str):
        super().__init__(f"writing influxdb point failed, {message}")
