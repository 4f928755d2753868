"""
CLI Module - Command-line interface for the Embedding Index Service.
====================================================================

Usage:
    embindex --help
    embindex init-db
    embindex seed products
    embindex search products "lightweight running shoes" -k 3
    embindex add clubs --id 7 --text "Basque football club" -a name="Athletic Club"

Components:
- main: Typer CLI application
"""

from embedding_index.cli.main import app, cli

__all__ = ["app", "cli"]
