# deck/components/cli/__init__.py
"""
CLI components for Deck.

This package provides the command-line interface: the main application and
the ``images``, ``custom`` and ``templates`` subcommands.
"""
from deck.components.cli.main import app as main_app
from deck.components.cli.images import app as images_app
from deck.components.cli.custom import app as custom_app
from deck.components.cli.templates import app as templates_app

# Add subcommands to the main app
main_app.add_typer(images_app, name="images", help="Image, Custom and container management")
main_app.add_typer(custom_app, name="custom", help="Custom configuration management")
main_app.add_typer(templates_app, name="templates", help="Template management")

# Export the main app
app = main_app

__all__ = ['app']
