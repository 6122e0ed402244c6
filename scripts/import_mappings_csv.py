#!/usr/bin/env python3
"""
Import phone -> email mappings from a CSV file into the directory.

Columns: phone, email, name, company, type (header optional). Several emails
for one phone can be given in the email column separated by ";".

Dry run by default; pass --execute to write.
"""
import sys
import logging
import argparse
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from api.services.csv_import import ImportResult, parse_csv, validate_row
from api.services.directory_store import DirectoryStore, get_directory_store
from config.settings import settings

logging.basicConfig(level=logging.INFO, format='%(levelname)s: %(message)s')
logger = logging.getLogger(__name__)


def import_mappings_csv(
    csv_path: str,
    dry_run: bool = True,
    batch_size: int = None,
    store: DirectoryStore = None,
) -> ImportResult:
    """
    Import a CSV file.

    Args:
        csv_path: Path to CSV file
        dry_run: If True, only validate rows
        batch_size: Rows per transaction (default from settings)
        store: Directory store (default singleton)

    Returns:
        ImportResult (accepted counts rows that would be written on a dry run)
    """
    content = Path(csv_path).read_text(encoding="utf-8-sig")
    rows = parse_csv(content)
    logger.info(f"Read {len(rows)} rows from {csv_path}")

    if dry_run:
        result = ImportResult()
        for row in rows:
            _, reason = validate_row(row)
            if reason:
                result.rejected.append(reason)
            else:
                result.accepted += 1
        return result

    store = store or get_directory_store()
    return store.bulk_import(rows, batch_size=batch_size or settings.import_batch_size)


if __name__ == '__main__':
    parser = argparse.ArgumentParser(description='Import phone -> email mappings from CSV')
    parser.add_argument('csv', type=str, help='Path to CSV file')
    parser.add_argument('--execute', action='store_true', help='Actually write mappings')
    parser.add_argument('--batch-size', type=int, default=None, help='Rows per transaction')
    args = parser.parse_args()

    result = import_mappings_csv(args.csv, dry_run=not args.execute, batch_size=args.batch_size)

    for reason in result.rejected:
        print(f"  Rejected: {reason}")
    print(f"\nAccepted: {result.accepted}")
    print(f"Rejected: {len(result.rejected)}")
    if not args.execute:
        print("\nDRY RUN - no changes made. Use --execute to apply.")
