"""CLI entry point.

Allows running the CLI as a module: python -m metasearch.cli
"""

from metasearch.cli import app

if __name__ == "__main__":
    app()
