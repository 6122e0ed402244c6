#!/usr/bin/env python3
"""
Report on the directory database.

Counts records, flags documents in the legacy single-email shape and
documents with no usable email, and shows live/expired call details.
"""
import sys
import json
import logging
import argparse
import sqlite3
from datetime import datetime, timezone
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from api.services.directory_store import DirectoryRecord
from api.utils.db_paths import get_directory_db_path

logging.basicConfig(level=logging.INFO, format='%(levelname)s: %(message)s')
logger = logging.getLogger(__name__)


def check_directory_store(db_path: str = None) -> dict:
    """
    Inspect the directory database.

    Returns:
        Stats dict
    """
    db_path = db_path or get_directory_db_path()
    stats = {
        'records': 0,
        'legacy_records': 0,
        'unusable_records': 0,
        'multi_email_records': 0,
        'call_details': 0,
        'expired_call_details': 0,
    }

    conn = sqlite3.connect(db_path)
    try:
        for key, data in conn.execute("SELECT phone_number, data FROM phone_email_mappings"):
            stats['records'] += 1
            doc = json.loads(data)
            if 'emails' not in doc and doc.get('email'):
                stats['legacy_records'] += 1
            record = DirectoryRecord.from_document(key, doc)
            if record is None:
                stats['unusable_records'] += 1
                print(f"  Unusable: {key}")
            elif len(record.emails) > 1:
                stats['multi_email_records'] += 1

        now = datetime.now(timezone.utc).isoformat(timespec="microseconds")
        stats['call_details'] = conn.execute("SELECT COUNT(*) FROM call_details").fetchone()[0]
        stats['expired_call_details'] = conn.execute(
            "SELECT COUNT(*) FROM call_details WHERE expire_at <= ?", (now,)
        ).fetchone()[0]
    finally:
        conn.close()

    return stats


if __name__ == '__main__':
    parser = argparse.ArgumentParser(description='Report on the directory database')
    parser.add_argument('--db', type=str, help='Path to directory database')
    args = parser.parse_args()

    stats = check_directory_store(args.db)
    print("\nDirectory store:")
    for name, value in stats.items():
        print(f"  {name}: {value}")
