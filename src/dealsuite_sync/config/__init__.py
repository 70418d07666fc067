"""
Configuration module for the Dealsuite sync pipeline.

This module provides centralized configuration settings and logging setup
used throughout the pipeline.

Submodules:
    settings: All configuration constants, service endpoints, and defaults.
    logging_config: Centralized logging configuration.
"""

from .settings import *
from .logging_config import setup_logging
