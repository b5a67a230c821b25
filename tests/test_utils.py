import datetime as dt

import pytest

from claritypath.utils import (
    clean_cpf,
    cpf_is_valid,
    format_cpf,
    hash_password,
    parse_date,
    parse_rfc3339_datetime,
    sign_value,
    verify_password,
    verify_signed_value,
)


@pytest.mark.parametrize("cpf", ["529.982.247-25", "52998224725", "111.444.777-35"])
def test_valid_cpfs(cpf):
    assert cpf_is_valid(cpf)


@pytest.mark.parametrize("cpf", ["529.982.247-26", "11111111111", "123", ""])
def test_invalid_cpfs(cpf):
    assert not cpf_is_valid(cpf)


def test_cpf_formatting():
    assert clean_cpf("529.982.247-25") == "52998224725"
    assert format_cpf("52998224725") == "529.982.247-25"


def test_password_hash_round_trip():
    digest, salt = hash_password("segredo1")
    assert verify_password("segredo1", digest, salt)
    assert not verify_password("segredo2", digest, salt)


def test_signed_values_detect_tampering():
    signed = sign_value("employee:42")
    assert verify_signed_value(signed) == "employee:42"
    assert verify_signed_value(signed.replace("42", "43")) is None
    assert verify_signed_value("") is None


def test_parse_timestamps_to_utc():
    assert parse_rfc3339_datetime("2026-03-02T09:00:00-03:00") == dt.datetime(2026, 3, 2, 12, tzinfo=dt.timezone.utc)
    assert parse_rfc3339_datetime("2026-03-02T12:00:00Z").tzinfo is not None
    assert parse_rfc3339_datetime("2026-03-02 12:00:00").tzinfo is not None
    assert parse_rfc3339_datetime("ontem") is None
    assert parse_rfc3339_datetime(None) is None


def test_parse_dates_in_both_formats():
    assert parse_date("1990-05-17") == "1990-05-17"
    assert parse_date("17/05/1990") == "1990-05-17"
    assert parse_date("17-05-1990") is None
