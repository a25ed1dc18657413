"""Linkwatch: link risk scanning for shared chat spaces."""

__version__ = "0.1.0"
