"""
Configuration module for Batch OCR.
"""
from .constants import *
from .logging_config import setup_logger, get_logger, job_logger, logger
from .settings import Settings, settings

__all__ = [
    # Logging
    'setup_logger',
    'get_logger',
    'job_logger',
    'logger',
    # Settings
    'Settings',
    'settings',
    # Constants (all exported via *)
]
