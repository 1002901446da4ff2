"""Shared domain package for the checkout payment orchestration backend."""

__version__ = "0.1.0"
