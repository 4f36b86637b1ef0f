"""
Utility Functions

Common utilities for logging, configuration and snapshot
file operations shared across the self-healing core.
"""

from .logger import get_logger, StructuredLogger
from .config import load_config, get_settings, settings, Settings
from .file_utils import ensure_directory, read_json, write_json

__all__ = [
    'get_logger',
    'StructuredLogger',
    'load_config',
    'get_settings',
    'settings',
    'Settings',
    'ensure_directory',
    'read_json',
    'write_json'
]
