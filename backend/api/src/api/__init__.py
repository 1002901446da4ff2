"""FastAPI application package for the checkout payment API."""

__version__ = "0.1.0"
