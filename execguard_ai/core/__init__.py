"""
Core utilities shared by the governance engine and the HTTP server.

At the moment this is the logging configuration.
"""

from execguard_ai.core.logging_config import get_logger, setup_logging

__all__ = ["get_logger", "setup_logging"]
