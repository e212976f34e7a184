"""Pageshot - browser capture engine for uncooperative web pages."""

__version__ = "1.0.0"
