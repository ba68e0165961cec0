"""
Card number and QR payload generation.

Card number format: CIE-{YYYY}-{AAAAA}-{BBBBB}
- fixed prefix and issue year
- 2 segments x 5 base32 chars of randomness (32^10 ≈ 10^15 per year)

The QR payload is ``{card_number}.{HHHHHHHHHHHHHHHH}``: a truncated
HMAC-SHA256 of the card number, so a scanner holding the key can tell a
printed card from a forged one without a database round trip.
"""

import hashlib
import hmac
import os
from datetime import date

# Base32 alphabet (uppercase + digits 2-7)
BASE32_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZ234567"
SEGMENT_LEN = 5
RANDOM_SEGMENTS = 2
PREFIX = "CIE"
QR_MAC_LEN = 16


def _random_segment() -> str:
    return "".join(
        BASE32_ALPHABET[b % 32] for b in os.urandom(SEGMENT_LEN)
    )


def generate_card_number(issued_on: date) -> str:
    segments = [_random_segment() for _ in range(RANDOM_SEGMENTS)]
    return "-".join([PREFIX, f"{issued_on.year:04d}", *segments])


def qr_payload(card_number: str, hmac_key: str) -> str:
    mac = hmac.new(hmac_key.encode(), card_number.encode(), hashlib.sha256).hexdigest()
    return f"{card_number}.{mac[:QR_MAC_LEN].upper()}"


def verify_qr_payload(payload: str, keyring: dict[int, str]) -> bool:
    """Check a scanned QR payload against every key in the keyring."""
    card_number, sep, _mac = payload.rpartition(".")
    if not sep or not card_number.startswith(f"{PREFIX}-"):
        return False
    for key in keyring.values():
        if hmac.compare_digest(qr_payload(card_number, key), payload):
            return True
    return False
