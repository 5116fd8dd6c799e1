"""Hybrid recommendation scoring and online learning service."""

__version__ = "0.1.0"
