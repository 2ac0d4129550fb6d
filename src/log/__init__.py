"""
Logging module for the supervisor.
This module provides the console logging setup and its formatter.
"""

from .setup import setup_logging, MainFormatter

__all__ = ["setup_logging", "MainFormatter"]
