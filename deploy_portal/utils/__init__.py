"""Utility functions for the deploy portal."""

from deploy_portal.utils.logging import configure_logging, get_logger

__all__ = [
    "configure_logging",
    "get_logger",
]
