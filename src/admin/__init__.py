"""Micropub admin entry point package.

Exported Functions:
    main: Entry point for the micropub-admin console command
    configure_logging: Root logger setup used by main
"""
from .admin import configure_logging, main

__all__ = ["configure_logging", "main"]
