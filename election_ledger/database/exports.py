# election_ledger/database/exports.py

import csv
import logging
from collections import Counter
from typing import Iterable, TextIO, Tuple

from election_ledger.database.models import Vote
from election_ledger.database.storage import format_datetime, read_rows
from election_ledger.errors import ResourceError

# Vote export for external tools, and the offline reducer that sums several
# exports by (election_id, choice). The reducer does not deduplicate votes
# that appear in more than one file.

logger = logging.getLogger(__name__)

EXPORT_FIELDS = ['id', 'election_id', 'voter_id', 'choice', 'timestamp']


def write_votes(stream: TextIO, votes: Iterable[Vote]) -> int:
    writer = csv.writer(stream)
    writer.writerow(EXPORT_FIELDS)
    written = 0
    for vote in votes:
        writer.writerow([vote.id, vote.election_id, vote.voter_id,
                         vote.choice, format_datetime(vote.timestamp)])
        written += 1
    return written


def write_votes_csv(path: str, votes: Iterable[Vote]) -> int:
    try:
        with open(path, 'w', newline='', encoding='utf-8') as f:
            return write_votes(f, votes)
    except OSError as e:
        raise ResourceError(f"exporting votes to {path} failed: {e}") from e


def aggregate_vote_exports(paths: Iterable[str]) -> Counter:
    """Sum vote counts keyed by (election_id, choice) across export files."""
    totals: Counter = Counter()
    for path in paths:
        try:
            with open(path, newline='', encoding='utf-8', errors='surrogateescape') as f:
                reader = csv.DictReader(f)
                try:
                    if reader.fieldnames is None:
                        continue
                except csv.Error as e:
                    logger.warning("Skipping export %s: unreadable header: %s", path, e)
                    continue
                for line_no, row in read_rows(reader, f"export {path}"):
                    try:
                        key: Tuple[int, int] = (int(row['election_id']), int(row['choice']))
                    except (KeyError, ValueError):
                        logger.warning("Skipping malformed export row %s:%d", path, line_no)
                        continue
                    totals[key] += 1
        except OSError as e:
            raise ResourceError(f"reading export {path} failed: {e}") from e
    return totals
