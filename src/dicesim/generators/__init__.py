"""Telemetry generators."""

from .dice import DiceRoller, classify

__all__ = ["DiceRoller", "classify"]
