import math

import pytest

from pegbridge.errors import EmptyPool, InvalidAmount, InvalidOffset, MalformedOracleReading
from pegbridge.pricing import (
    convert_to_token_amount,
    format_units,
    offset_multiplier,
    parse_offset,
    resolve_reserves,
    to_base_units,
)

E18 = 10 ** 18
TOKEN = "0xAbCdEf0123456789aBcDeF0123456789AbCdEf01"
OTHER = "0x55d398326f99059ff775485246999027b3197955"

S = 2_000_000 * E18
R = 1_000_000 * E18


# --- Price resolver ---

def test_token0_match_is_case_insensitive():
    assert resolve_reserves(S, R, TOKEN.lower(), TOKEN) == (S, R)
    assert resolve_reserves(S, R, TOKEN.upper().replace("0X", "0x"), TOKEN.lower()) == (S, R)


def test_token0_is_reference_token_swaps_reserves():
    assert resolve_reserves(R, S, OTHER, TOKEN) == (S, R)


def test_zero_settlement_reserve_is_empty_pool():
    with pytest.raises(EmptyPool):
        resolve_reserves(0, R, TOKEN, TOKEN)
    with pytest.raises(EmptyPool):
        resolve_reserves(R, 0, OTHER, TOKEN)


def test_zero_reference_reserve_is_empty_pool():
    with pytest.raises(EmptyPool):
        resolve_reserves(S, 0, TOKEN, TOKEN)


# --- Conversion ---

def test_direct_mode_exact():
    assert convert_to_token_amount(to_base_units(100), S, R, 0) == 200 * E18


def test_direct_mode_with_offset():
    assert convert_to_token_amount(to_base_units(100), S, R, parse_offset("+10.00")) == 220 * E18


def test_negative_offset():
    assert convert_to_token_amount(to_base_units(100), S, R, -50) == 100 * E18


def test_oracle_mode():
    amount = convert_to_token_amount(to_base_units(700), S, R, 0, external_rate=14_000_000)
    assert amount == 196 * E18


def test_multiply_before_divide_keeps_precision():
    # 1 unit priced at 3/7: dividing first would give 0
    assert convert_to_token_amount(E18, 3, 7, 0) == 3 * E18 // 7
    assert convert_to_token_amount(E18, 3, 7, 0) == 428571428571428571


def test_oracle_mode_floors_each_step():
    # 1e18 * 33333333 // 1e8 = 333333330000000000, then * 1 // 3
    amount = convert_to_token_amount(E18, 1, 3, 0, external_rate=33_333_333)
    assert amount == (E18 * 33_333_333 // 10 ** 8) // 3


def test_non_positive_oracle_rate_rejected():
    with pytest.raises(MalformedOracleReading):
        convert_to_token_amount(E18, S, R, 0, external_rate=0)


def test_zero_reference_reserve_rejected_by_engine():
    with pytest.raises(EmptyPool):
        convert_to_token_amount(E18, S, 0, 0)


# --- Offset ---

def test_offset_multiplier_values():
    assert offset_multiplier(0) == 10000
    assert offset_multiplier(10) == 11000
    assert offset_multiplier(-100) == 0


def test_offset_resolution_is_four_decimals():
    # +0.00001% is below the multiplier's resolution
    assert offset_multiplier(0.00001) == 10000
    assert offset_multiplier(1.0001) == 10100


@pytest.mark.parametrize("offset", [2.5, -7.25, 33.3333, 150])
def test_offset_multiplier_matches_float_floor(offset):
    assert offset_multiplier(offset) == int(math.floor((1 + offset / 100) * 10000))


def test_offset_below_minus_100_rejected():
    with pytest.raises(InvalidOffset):
        offset_multiplier(-100.01)


def test_offset_multiplier_rejects_overflow():
    with pytest.raises(InvalidOffset):
        offset_multiplier(1e308)


@pytest.mark.parametrize("raw,expected", [(10, 10.0), ("+10.00", 10.0), ("-5", -5.0), (" 2.5 ", 2.5), ("-100", -100.0)])
def test_parse_offset_accepts(raw, expected):
    assert parse_offset(raw) == expected


@pytest.mark.parametrize("raw", [None, "", "abc", "nan", "inf", True, -100.5, "-101", 1e308, "1e308", 10 ** 400])
def test_parse_offset_rejects(raw):
    with pytest.raises(InvalidOffset):
        parse_offset(raw)


# --- Units ---

def test_to_base_units():
    assert to_base_units("100.5") == 100_500_000_000_000_000_000
    assert to_base_units(0.1) == 10 ** 17
    assert to_base_units(100) == 100 * E18
    assert to_base_units("123456789012.123456789012345678") == 123456789012123456789012345678


def test_to_base_units_truncates_extra_digits():
    assert to_base_units("1.0000000000000000009") == E18


@pytest.mark.parametrize("raw", [0, "0", "-1", "abc", "NaN", True, "0.0000000000000000001", "1e60", "1e999999999"])
def test_to_base_units_rejects(raw):
    with pytest.raises(InvalidAmount):
        to_base_units(raw)


def test_format_units():
    assert format_units(200 * E18) == "200"
    assert format_units(5 * 10 ** 17) == "0.5"
    assert format_units(1) == "0.000000000000000001"
    assert format_units(1234, decimals=0) == "1234"


def test_to_base_units_is_exact_for_long_inputs():
    # 100 fractional nines must truncate, not round up to 1
    assert to_base_units("0." + "9" * 100) == E18 - 1
    big = "9" * 59 + ".123456789012345678"
    assert to_base_units(big) == int("9" * 59 + "123456789012345678")


def test_to_base_units_uint256_bound():
    assert to_base_units(2 ** 256 - 1, decimals=0) == 2 ** 256 - 1
    with pytest.raises(InvalidAmount):
        to_base_units(2 ** 256, decimals=0)


def test_to_base_units_other_decimals():
    assert to_base_units("100.1234567", decimals=6) == 100_123_456
    assert to_base_units(5, decimals=0) == 5
