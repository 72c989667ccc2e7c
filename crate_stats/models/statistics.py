"""Aggregate download statistics over a trailing window."""
from typing import Dict

from pydantic import BaseModel, ConfigDict, model_validator


class Statistics(BaseModel):
    """Point-in-time snapshot of cache effectiveness.

    The serialized shape is the stable contract for status consumers:
    exactly these four integer fields, in this order.
    """

    model_config = ConfigDict(frozen=True, strict=True, extra="forbid")

    downloads: int = 0
    hits: int = 0
    misses: int = 0
    bandwidth_saved: int = 0

    @model_validator(mode="after")
    def misses_complete_downloads(self) -> "Statistics":
        if self.downloads != self.hits + self.misses:
            raise ValueError("downloads must equal hits + misses")
        return self

    @staticmethod
    def from_counts(downloads: int, hits: int, bandwidth_saved: int) -> "Statistics":
        """Build a snapshot, deriving misses from downloads and hits."""
        return Statistics(
            downloads=int(downloads),
            hits=int(hits),
            misses=int(downloads) - int(hits),
            bandwidth_saved=int(bandwidth_saved),
        )

    def as_dict(self) -> Dict[str, int]:
        return self.model_dump()

    def as_json(self) -> str:
        return self.model_dump_json()
