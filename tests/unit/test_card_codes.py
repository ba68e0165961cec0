"""Tests for card numbers, QR payloads and CPF checks."""

import re
from datetime import date

import pytest

from idcard_engine.students.card_codes import (
    BASE32_ALPHABET,
    generate_card_number,
    qr_payload,
    verify_qr_payload,
)
from idcard_engine.students.validators import (
    format_cpf,
    normalize_cpf,
    parse_birth_date,
    validate_cpf,
)

CARD_RE = re.compile(rf"^CIE-2026-[{BASE32_ALPHABET}]{{5}}-[{BASE32_ALPHABET}]{{5}}$")


class TestCardNumber:
    def test_format(self):
        assert CARD_RE.match(generate_card_number(date(2026, 3, 1)))

    def test_unique(self):
        numbers = {generate_card_number(date(2026, 3, 1)) for _ in range(200)}
        assert len(numbers) == 200


class TestQrPayload:
    def test_shape(self):
        payload = qr_payload("CIE-2026-AAAAA-BBBBB", "k")
        number, mac = payload.rsplit(".", 1)
        assert number == "CIE-2026-AAAAA-BBBBB"
        assert len(mac) == 16 and mac == mac.upper()

    def test_verify_with_rotated_keyring(self):
        payload = qr_payload("CIE-2026-AAAAA-BBBBB", "old-key")
        assert verify_qr_payload(payload, {0: "old-key", 1: "new-key"})
        assert not verify_qr_payload(payload, {1: "new-key"})

    @pytest.mark.parametrize("payload", [
        "CIE-2026-AAAAA-BBBBB",
        "CIE-2026-AAAAA-BBBBC.0000000000000000",
        "XYZ-2026-AAAAA-BBBBB.0000000000000000",
        "",
    ])
    def test_forged_payloads(self, payload):
        assert not verify_qr_payload(payload, {0: "k"})

    def test_tampered_number(self):
        payload = qr_payload("CIE-2026-AAAAA-BBBBB", "k")
        forged = payload.replace("AAAAA", "AAAAB")
        assert not verify_qr_payload(forged, {0: "k"})


class TestCpf:
    @pytest.mark.parametrize("cpf", ["52998224725", "529.982.247-25", " 529 982 247 25 "])
    def test_valid(self, cpf):
        assert validate_cpf(cpf)

    @pytest.mark.parametrize("cpf", [
        "52998224724",      # wrong second digit
        "52998224735",      # wrong first digit
        "00000000000",
        "99999999999",
        "5299822472",
        "",
    ])
    def test_invalid(self, cpf):
        assert not validate_cpf(cpf)

    def test_normalize_and_format(self):
        assert normalize_cpf("529.982.247-25") == "52998224725"
        assert format_cpf("52998224725") == "529.982.247-25"
        assert format_cpf("123") == "123"


class TestBirthDate:
    def test_parse(self):
        assert parse_birth_date("2001-05-20") == date(2001, 5, 20)
        assert parse_birth_date(date(2001, 5, 20)) == date(2001, 5, 20)

    def test_invalid(self):
        with pytest.raises(ValueError):
            parse_birth_date("20/05/2001")
