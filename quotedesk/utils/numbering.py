"""Yearly document numbering (DEV-2026-0001, CMD-2026-0001)."""
import re
from sqlalchemy import func

MIN_SEQUENCE_DIGITS = 4


def format_document_number(prefix: str, year: int, sequence: int) -> str:
    """Build '<prefix>-<year>-<seq>' with the sequence zero-padded to 4 digits."""
    return f"{prefix}-{year}-{str(sequence).zfill(MIN_SEQUENCE_DIGITS)}"


def parse_sequence(number: str, prefix: str, year: int):
    """Return the sequence part of a document number, or None if it does not match."""
    match = re.match(rf'^{re.escape(prefix)}-{year}-(\d+)$', number or '')
    if not match:
        return None
    return int(match.group(1))


def next_document_number(session, column, prefix: str, year: int) -> str:
    """
    Next number for the year: highest existing sequence + 1.

    Sequences are zero-padded to *at least* 4 digits, so ordering by length
    first keeps 10000 after 9999.
    """
    pattern = f"{prefix}-{year}-%"
    last = session.query(column).filter(column.like(pattern)).order_by(
        func.length(column).desc(),
        column.desc()
    ).first()

    sequence = 1
    if last:
        current = parse_sequence(last[0], prefix, year)
        if current is not None:
            sequence = current + 1
    return format_document_number(prefix, year, sequence)
