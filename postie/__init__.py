"""Postie - a local HTTP client for Postman collections and environments."""

__version__ = "0.1.0"
