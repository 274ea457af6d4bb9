# deck/api/__init__.py
"""
Public API for Deck components.

Each submodule exposes getters that build components lazily through the
service registry, so importing the API never touches the container engine.
"""
