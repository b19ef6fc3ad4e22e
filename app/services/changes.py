"""Detect whether an item changed upstream within a lookback window."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from ..models import Change, ChangeItem, ContentKind
from ..utils import filter_unique_season_ids
from .tmdb import DateWindow, TMDBClient

logger = logging.getLogger(__name__)

# Change categories that affect stored fields or the season/episode hierarchy.
SUPPORTED_CHANGE_KEYS = frozenset(
    {
        "air_date",
        "episode",
        "episodes",
        "episode_number",
        "episode_run_time",
        "general",
        "genres",
        "images",
        "name",
        "network",
        "overview",
        "runtime",
        "season",
        "seasons",
        "season_number",
        "status",
        "title",
        "type",
    }
)

EPISODE_CHANGE_KEYS = frozenset({"episode", "episodes"})


@dataclass(slots=True)
class ChangeSet:
    """Raw change categories reported for one item."""

    kind: ContentKind
    tmdb_id: int
    window: DateWindow
    changes: list[Change] = field(default_factory=list)

    @property
    def keys(self) -> list[str]:
        return [change.key for change in self.changes]

    def items_for(self, key: str) -> list[ChangeItem]:
        items: list[ChangeItem] = []
        for change in self.changes:
            if change.key == key:
                items.extend(change.items)
        return items

    @property
    def season_ids(self) -> list[int]:
        """Distinct provider ids of the seasons named by ``season`` changes."""

        return filter_unique_season_ids(self.items_for("season"))

    def has_any(self, keys: frozenset[str]) -> bool:
        return any(change.key in keys for change in self.changes)


def has_supported_changes(changes: list[Change]) -> bool:
    return any(change.key in SUPPORTED_CHANGE_KEYS for change in changes)


class ChangeDetector:
    """Ask the provider for changes and filter them against the allow-list."""

    def __init__(self, tmdb: TMDBClient):
        self._tmdb = tmdb

    async def check_for_changes(
        self, kind: ContentKind, tmdb_id: int, window: DateWindow
    ) -> ChangeSet | None:
        """Return the item's changes, or ``None`` if nothing relevant changed.

        The returned set carries every reported category, not only the
        allow-listed ones, since the season cascade reads ``season`` items
        directly.
        """

        changes = await self._tmdb.get_changes(kind, tmdb_id, window)
        if not has_supported_changes(changes):
            logger.debug(
                "No supported changes for %s %s between %s and %s",
                kind.value,
                tmdb_id,
                window.start,
                window.end,
            )
            return None
        return ChangeSet(kind=kind, tmdb_id=tmdb_id, window=window, changes=changes)
