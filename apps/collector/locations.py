"""Location catalogue bundled with the collector."""

from __future__ import annotations

import tomllib
from pathlib import Path

from pydantic import TypeAdapter

from core.forecast.models import Location

DEFAULT_LOCATIONS_PATH = Path(__file__).with_name("locations.toml")

_locations_adapter = TypeAdapter(list[Location])


def load_locations(path: str | Path | None = None) -> list[Location]:
    source = Path(path) if path is not None else DEFAULT_LOCATIONS_PATH
    with source.open("rb") as fh:
        document = tomllib.load(fh)

    locations = _locations_adapter.validate_python(document.get("locations", []))
    ids = [location.id for location in locations]
    if len(ids) != len(set(ids)):
        raise ValueError(f"duplicate location ids in {source}")
    return locations
