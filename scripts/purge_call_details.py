#!/usr/bin/env python3
"""
Delete call details past their retention window.

Expired rows are already ignored on read; this reclaims the space.
"""
import sys
import logging
import argparse
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from api.services.directory_store import DirectoryStore, get_directory_store

logging.basicConfig(level=logging.INFO, format='%(levelname)s: %(message)s')
logger = logging.getLogger(__name__)


def purge_call_details(store: DirectoryStore = None) -> int:
    """Purge expired call details. Returns the number of rows removed."""
    store = store or get_directory_store()
    removed = store.purge_expired_call_contexts()
    logger.info(f"Purged {removed} expired call details")
    return removed


if __name__ == '__main__':
    parser = argparse.ArgumentParser(description='Purge expired call details')
    parser.add_argument('--db', type=str, help='Path to directory database')
    args = parser.parse_args()

    purge_call_details(DirectoryStore(args.db) if args.db else None)
