"""
Configuration layer - Settings and constants
"""

from bizsql.config.settings import settings, Settings, PROJECT_ROOT, resolve_project_path
from bizsql.config.constants import GENERAL_DOMAIN

__all__ = [
    "settings",
    "Settings",
    "PROJECT_ROOT",
    "resolve_project_path",
    "GENERAL_DOMAIN",
]
