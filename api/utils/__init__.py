# PhoneBridge API Utilities
"""
Shared utility functions for PhoneBridge API services.
"""

from api.utils.datetime_utils import make_aware
from api.utils.db_paths import get_directory_db_path

__all__ = ["make_aware", "get_directory_db_path"]
