"""Shared data models for the roll-call bot."""

from .roster import ANONYMOUS, AnonymousSlot, Entry, Game, Section, primary_section

__all__ = [
    "ANONYMOUS",
    "AnonymousSlot",
    "Entry",
    "Game",
    "Section",
    "primary_section",
]
