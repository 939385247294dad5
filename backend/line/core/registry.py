"""In-memory registry of roll-call games, keyed by conversation id."""

from __future__ import annotations

from collections.abc import Iterator
from typing import Any

from shared.models.roster import Game


class GameRegistry:
    """Owns every live Game.

    Built once at startup from whatever the persistence layer recovered and
    handed to the engine, the scheduler and the persistence coordinator.
    The stores only ever hold projections of this object.
    """

    def __init__(self, games: dict[str, Game] | None = None) -> None:
        self._games: dict[str, Game] = dict(games or {})

    def get(self, gid: str) -> Game | None:
        return self._games.get(gid)

    def put(self, gid: str, game: Game) -> None:
        self._games[gid] = game

    def pop(self, gid: str) -> Game | None:
        return self._games.pop(gid, None)

    def replace_all(self, games: dict[str, Game]) -> None:
        self._games = dict(games)

    def gids(self) -> list[str]:
        """Snapshot of the current keys, safe to iterate across awaits."""
        return list(self._games)

    def items(self) -> list[tuple[str, Game]]:
        return list(self._games.items())

    def to_dict(self) -> dict[str, dict[str, Any]]:
        return {gid: game.to_dict() for gid, game in self._games.items()}

    def __contains__(self, gid: object) -> bool:
        return gid in self._games

    def __len__(self) -> int:
        return len(self._games)

    def __iter__(self) -> Iterator[str]:
        return iter(self.gids())
