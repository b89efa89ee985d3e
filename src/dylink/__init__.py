"""Dylink - hot-swappable code modules with an encrypted artifact pipeline."""

__version__ = "0.1.0"
