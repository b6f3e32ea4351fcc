"""Command line interface for lan-backup."""

from .dispatcher import create_parser, main

__all__ = ["create_parser", "main"]
