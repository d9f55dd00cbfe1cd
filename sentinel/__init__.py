"""Signed agent commands, human-approved reservations, conflict-free calendar."""

__version__ = "0.1.0"
