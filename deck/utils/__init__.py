# deck/utils/__init__.py
"""Utility helpers for Deck."""
