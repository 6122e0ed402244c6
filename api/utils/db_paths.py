"""
Database path utilities for PhoneBridge API services.
"""
from pathlib import Path

from config.settings import settings


def get_directory_db_path() -> str:
    """
    Get the path to the directory database.

    Creates the parent directory if it doesn't exist.

    Returns:
        Path to the directory.db file
    """
    db_path = Path(settings.directory_db_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)
    return str(db_path)
