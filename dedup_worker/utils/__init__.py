"""Utility modules for the worker."""

from dedup_worker.utils.logging import setup_logging

__all__ = [
    "setup_logging",
]
