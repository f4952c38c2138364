"""hourbank -- hour-package pricing and prepaid-hour credit service."""

__version__ = "1.0.0"
