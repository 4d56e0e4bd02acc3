"""
Catalog-wide location lookup.

Runs the lightweight recognition query against every location in the ledger
and reports the strongest one.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from identisnap.logging import get_logger
from identisnap.services.descriptor_index import index_paths

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

    from identisnap.services.bin_ledger import BinLedger
    from identisnap.services.descriptor_index import LocationTag
    from identisnap.services.recogniser import Recogniser


@dataclass
class LocationScore:
    """Confidence of one catalogued location for a query."""

    location: LocationTag
    confidence: int


@dataclass
class LocateResult:
    """Scores for every catalogued location, strongest first."""

    scores: list[LocationScore] = field(default_factory=list)

    @property
    def best(self) -> LocationScore | None:
        """Strongest location, or None when nothing matched at all."""
        if not self.scores or self.scores[0].confidence == 0:
            return None
        return self.scores[0]


class Locator:
    """Answer "which catalogued place is this?" over the whole ledger."""

    def __init__(
        self,
        ledger: BinLedger,
        index_dir: Path,
        recogniser_factory: Callable[[Path], Recogniser],
    ) -> None:
        """
        Args:
            ledger: Ledger listing the catalogued locations
            index_dir: Directory holding the index records
            recogniser_factory: Builds a Recogniser from an index path
        """
        self.ledger = ledger
        self.index_dir = index_dir
        self.recogniser_factory = recogniser_factory
        self.logger = get_logger("locator")
        self._recognisers: dict[str, Recogniser] = {}

    def locations(self) -> list[LocationTag]:
        """Distinct ledger locations in first-ingested order, skipping malformed lines."""
        seen: dict[str, LocationTag] = {}
        for entry in self.ledger.entries(strict=False):
            seen.setdefault(entry.location.key, entry.location)
        return list(seen.values())

    def recogniser(self, location: LocationTag) -> Recogniser:
        """Cached recogniser for a location, loaded on first use."""
        if location.key not in self._recognisers:
            index_path, _ = index_paths(self.index_dir, location)
            self._recognisers[location.key] = self.recogniser_factory(index_path)
        return self._recognisers[location.key]

    def forget(self, location: LocationTag) -> None:
        """Drop a cached recogniser so the next query reloads its index."""
        self._recognisers.pop(location.key, None)

    def locate(self, image_bytes: bytes) -> LocateResult:
        """
        Score the image against every catalogued location.

        The query is described once and reused for every location. Ties keep
        ledger order.
        """
        recognisers = [(location, self.recogniser(location)) for location in self.locations()]
        scores: list[LocationScore] = []
        if recognisers:
            descriptors = recognisers[0][1].describe(image_bytes)
            scores = [
                LocationScore(location, recogniser.count_matches(descriptors))
                for location, recogniser in recognisers
            ]
        scores.sort(key=lambda s: s.confidence, reverse=True)
        result = LocateResult(scores=scores)

        best = result.best
        self.logger.info(
            "Locate completed",
            extra={
                "locations": len(scores),
                "best": best.location.key if best else None,
                "confidence": best.confidence if best else 0,
            },
        )
        return result
