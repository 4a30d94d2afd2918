import re

from shiptrack import awb


def test_single_code_format():
    code = awb.generate_awb()
    assert re.fullmatch(r"UEX\d{10}", code)


def test_batch_codes_are_distinct():
    codes = awb.generate_awb_batch(500)
    assert len(codes) == 500
    assert len(set(codes)) == 500
    assert all(re.fullmatch(r"UEX\d{8}", c) for c in codes)


def test_batch_resamples_collisions(monkeypatch):
    draws = iter([11111111, 11111111, 22222222, 11111111, 33333333])
    monkeypatch.setattr(awb._rng, "randint", lambda a, b: next(draws))
    assert awb.generate_awb_batch(3) == ["UEX11111111", "UEX22222222", "UEX33333333"]


def test_empty_batch():
    assert awb.generate_awb_batch(0) == []


def test_checked_code_round_trip():
    for _ in range(50):
        code = awb.generate_checked_awb()
        serial, digit = code[3:-1], code[-1]
        assert len(serial) == 7
        assert int(serial) % 7 == int(digit)
        assert awb.is_valid_checked_awb(code)


def test_checked_code_known_value():
    # 8392011 % 7 == 5
    assert awb.is_valid_checked_awb("UEX83920115")
    assert awb.is_valid_checked_awb("UEX12345675")
    assert not awb.is_valid_checked_awb("UEX83920114")
    assert not awb.is_valid_checked_awb("ABC83920115")
    assert not awb.is_valid_checked_awb("UEX8392011")
    assert not awb.is_valid_checked_awb("")
