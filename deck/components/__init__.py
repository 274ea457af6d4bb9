# deck/components/__init__.py
"""Deck components."""
