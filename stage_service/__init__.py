"""Stage Service — stage mutation-and-audit pipeline for deployment environments."""

__version__ = "0.1.0"
