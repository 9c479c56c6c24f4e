"""Transaction history search and summary counts"""

from dataclasses import dataclass, field
from typing import Dict, Iterable, List

from capping_gateway.domain.models import TransactionRecord, TransactionType
from capping_gateway.utils.money import from_minor_units


@dataclass
class HistorySummary:
    """Counts shown above the transaction table"""

    total: int
    by_type: Dict[TransactionType, int] = field(default_factory=dict)


def search_records(records: Iterable[TransactionRecord], term: str) -> List[TransactionRecord]:
    """Case-insensitive match on sender/target names, emails or the amount's digits"""
    needle = term.strip().lower()
    if not needle:
        return list(records)

    def matches(record: TransactionRecord) -> bool:
        haystack = [
            record.sender_name,
            record.target_name or "",
            record.sender_email or "",
            record.target_email or "",
            str(from_minor_units(record.amount_cents)),
        ]
        return any(needle in value.lower() for value in haystack)

    return [r for r in records if matches(r)]


def summarize_records(records: Iterable[TransactionRecord]) -> HistorySummary:
    records = list(records)
    by_type = {t: 0 for t in TransactionType}
    for record in records:
        by_type[record.type] += 1
    return HistorySummary(total=len(records), by_type=by_type)
