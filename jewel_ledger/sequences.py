"""
Human-readable document numbers (LOAN-2407-0001, SAV-2407-0001, RED-2407-0001).

Counters are kept per prefix and year-month in the store, so numbering
restarts every month.
"""

from datetime import date

from .periods import year_month
from .storage import StorageInterface


LOAN_PREFIX = "LOAN"
SAVING_PREFIX = "SAV"
REDEMPTION_PREFIX = "RED"


class SequenceIssuer:
    """Issues monotonically increasing sequence numbers per (prefix, year-month)"""

    def __init__(self, storage: StorageInterface, table: str = "sequences"):
        self.storage = storage
        self.table = table

    def next_sequence(self, prefix: str, period: str) -> int:
        """Return the next sequence for ``prefix`` in ``period`` (e.g. '2407'), starting at 1"""
        key = f"{prefix}-{period}"
        with self.storage.atomic():
            current = self.storage.load(self.table, key)
            value = (current['value'] if current else 0) + 1
            self.storage.save(self.table, key, {'id': key, 'value': value})
        return value

    def next_number(self, prefix: str, on: date) -> str:
        """Format the next document number for ``prefix`` issued on ``on``"""
        period = year_month(on)
        sequence = self.next_sequence(prefix, period)
        return format_number(prefix, period, sequence)


def format_number(prefix: str, period: str, sequence: int) -> str:
    return f"{prefix}-{period}-{sequence:04d}"
