# deck/__main__.py
"""
Entry point for Deck.
"""
from deck.components.cli import app

if __name__ == "__main__":
    app()
