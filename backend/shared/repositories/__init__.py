"""Shared repository layer for the roll-call bot."""

from .game_state import GameStateRepository

__all__ = [
    "GameStateRepository",
]
