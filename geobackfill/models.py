"""Core data models shared by the geocoding backfill."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional


class GeocodingSource(str, Enum):
    PROVIDER = "PROVIDER"
    SYNTHETIC = "SYNTHETIC"


@dataclass(frozen=True, slots=True)
class Coordinate:
    lat: float
    lng: float

    def to_dict(self) -> Dict[str, float]:
        return {"lat": self.lat, "lng": self.lng}


@dataclass(frozen=True, slots=True)
class BoundingBox:
    """Rectangular lat/lng region, inclusive on every edge."""

    min_lat: float
    max_lat: float
    min_lng: float
    max_lng: float

    def contains(self, coordinate: Coordinate) -> bool:
        return (
            self.min_lat <= coordinate.lat <= self.max_lat
            and self.min_lng <= coordinate.lng <= self.max_lng
        )


@dataclass(frozen=True, slots=True)
class GeocodeResult:
    """Outcome of resolving one address to a coordinate."""

    coordinate: Coordinate
    formatted_address: str
    is_approximate: bool
    source: GeocodingSource
    query: str
    place_id: Optional[str] = None


@dataclass(slots=True)
class MigrationStats:
    """Counters for one collection run. Never persisted."""

    collection: str
    processed: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0
    errors: List[str] = field(default_factory=list)


@dataclass(slots=True)
class MigrationReport:
    collections: List[MigrationStats] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    def add(self, stats: MigrationStats) -> None:
        self.collections.append(stats)
        self.errors.extend(stats.errors)

    @property
    def total_updated(self) -> int:
        return sum(stats.updated for stats in self.collections)

    @property
    def total_failed(self) -> int:
        return sum(stats.failed for stats in self.collections)

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)
