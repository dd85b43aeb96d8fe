"""Effective Challenge Rating (eCR) estimation for monster stat blocks."""

__version__ = "1.0.0"
