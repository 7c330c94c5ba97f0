"""Configuration and logging shared across :mod:`indexsync` components."""

from __future__ import annotations

from .config import AppConfig, default_config, load_config
from .logging import Logger, configure_logging, get_logger

__all__ = [
    "AppConfig",
    "Logger",
    "configure_logging",
    "default_config",
    "get_logger",
    "load_config",
]
