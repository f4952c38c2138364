"""Entry point for python -m hourbank."""

from hourbank.cli import app

if __name__ == "__main__":
    app()
