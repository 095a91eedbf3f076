"""Human-readable class numbers.

Format: ``{student initials}-{tutor initials}-{YYYYMMDD}-{sequence}``, for
example ``SM-JD-20241119-1``. The sequence is one more than the highest
suffix already used for the same student, tutor and date.
"""

from __future__ import annotations

import re
from datetime import date
from typing import Iterable

from .datetime import compact_date

_CLASS_NUMBER_PATTERN = re.compile(r"^[^\W\d_]{1,2}-[^\W\d_]{1,2}-\d{8}-[1-9]\d*$")


def initials(name: str) -> str:
    """First letters of the first and last word, or two letters of a single word."""

    parts = name.split()
    if not parts:
        return ""
    if len(parts) == 1:
        return parts[0][:2].upper()
    return (parts[0][0] + parts[-1][0]).upper()


def class_number_base(student_name: str, tutor_name: str, class_date: date) -> str:
    return f"{initials(student_name)}-{initials(tutor_name)}-{compact_date(class_date)}"


def next_class_number(
    student_name: str,
    tutor_name: str,
    class_date: date,
    existing: Iterable[str] = (),
) -> str:
    """Return the next unused class number for the student/tutor/date triple."""

    base = class_number_base(student_name, tutor_name, class_date)
    suffix_pattern = re.compile(rf"^{re.escape(base)}-(\d+)$")

    sequences = [int(match.group(1)) for match in map(suffix_pattern.match, existing) if match]
    sequences = [seq for seq in sequences if seq > 0]
    sequence = max(sequences) + 1 if sequences else 1
    return f"{base}-{sequence}"


def is_valid_class_number(value: str) -> bool:
    return _CLASS_NUMBER_PATTERN.match(value) is not None
