"""Local format checks for applicant identity fields.

These only check shape and check digits; whether a CPF belongs to a real
person is an external verification this service does not perform.
"""

import re
from datetime import date

_NON_DIGITS = re.compile(r"\D")
CPF_LENGTH = 11


def normalize_cpf(cpf: str) -> str:
    """Strip punctuation, leaving only digits."""
    return _NON_DIGITS.sub("", cpf or "")


def _check_digit(digits: str) -> int:
    weight = len(digits) + 1
    total = sum(int(d) * (weight - i) for i, d in enumerate(digits))
    remainder = (total * 10) % 11
    return 0 if remainder == 10 else remainder


def validate_cpf(cpf: str) -> bool:
    """Validate length, repeated-digit sequences and both check digits."""
    clean = normalize_cpf(cpf)
    if len(clean) != CPF_LENGTH:
        return False
    if clean == clean[0] * CPF_LENGTH:
        return False
    if _check_digit(clean[:9]) != int(clean[9]):
        return False
    return _check_digit(clean[:10]) == int(clean[10])


def format_cpf(cpf: str) -> str:
    clean = normalize_cpf(cpf)
    if len(clean) != CPF_LENGTH:
        return cpf
    return f"{clean[:3]}.{clean[3:6]}.{clean[6:9]}-{clean[9:]}"


def parse_birth_date(value: str | date) -> date:
    """Accept a date or an ISO ``YYYY-MM-DD`` string."""
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value).strip())
