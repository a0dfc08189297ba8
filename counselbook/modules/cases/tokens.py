"""Queue and session token formats.

A queue token is the two-digit Buddhist-era academic year followed by a four
digit running number (``680001``). The academic year turns over on June 1st.
A session token is the queue token plus a three digit visit number
(``680001-002``).
"""
import re
from datetime import datetime
from counselbook.core.timeutil import to_local

BUDDHIST_ERA_OFFSET = 543
ACADEMIC_YEAR_START_MONTH = 6

_TRAILING_DIGITS = re.compile(r"(\d+)$")

def academic_year_prefix(now: datetime) -> str:
    local = to_local(now)
    year = local.year + BUDDHIST_ERA_OFFSET
    if local.month < ACADEMIC_YEAR_START_MONTH:
        year -= 1
    return f"{year % 100:02d}"

def next_queue_token(prefix: str, greatest_existing: str | None) -> str:
    seq = 1
    if greatest_existing:
        m = _TRAILING_DIGITS.search(greatest_existing[len(prefix):])
        if m:
            seq = int(m.group(1)) + 1
    return f"{prefix}{seq:04d}"

def session_token(queue_token: str, attached_count: int) -> str:
    return f"{queue_token}-{attached_count + 1:03d}"
