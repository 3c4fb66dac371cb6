"""Run-scoped listing de-duplication."""

from __future__ import annotations

from flatwatch.scraper.models import ListingHit


class DedupRegister:
    """Remembers the listing ids seen during one crawl run.

    Hits without an id have nothing to compare against and are always
    accepted.
    """

    def __init__(self) -> None:
        self._seen: set[str] = set()

    def register(self, hit: ListingHit) -> bool:
        """Return ``True`` if *hit* is new, ``False`` if it is a duplicate."""
        if not hit.id:
            return True
        if hit.id in self._seen:
            return False
        self._seen.add(hit.id)
        return True

    def __contains__(self, listing_id: object) -> bool:
        return listing_id in self._seen

    def __len__(self) -> int:
        return len(self._seen)
