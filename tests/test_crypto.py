from __future__ import annotations

import hashlib
import hmac
import time

from subsync.core.crypto import parse_signature_header, verify_signature

SECRET = "whsec_test"
BODY = b'{"id":"evt_1","type":"customer.subscription.updated"}'


def sign(body: bytes, secret: str = SECRET, t: int | None = None) -> str:
    t = int(time.time()) if t is None else t
    mac = hmac.new(secret.encode("utf-8"), f"{t}.".encode("utf-8") + body, hashlib.sha256).hexdigest()
    return f"t={t},v1={mac}"


def test_parse_signature_header_collects_all_v1() -> None:
    t, v1s = parse_signature_header("t=123,v1=aaa,v0=zzz,v1=bbb")
    assert t == "123"
    assert v1s == ["aaa", "bbb"]


def test_parse_signature_header_tolerates_garbage() -> None:
    assert parse_signature_header("") == (None, [])
    assert parse_signature_header("nonsense,=,v1=") == (None, [])


def test_valid_signature_accepted() -> None:
    assert verify_signature(BODY, sign(BODY), SECRET) is True


def test_any_matching_candidate_accepted() -> None:
    header = sign(BODY)
    t, good = header.split(",")
    assert verify_signature(BODY, f"{t},v1={'0' * 64},{good}", SECRET) is True


def test_single_byte_body_change_rejected() -> None:
    header = sign(BODY)
    for i in (0, len(BODY) // 2, len(BODY) - 1):
        mutated = bytearray(BODY)
        mutated[i] ^= 0x01
        assert verify_signature(bytes(mutated), header, SECRET) is False


def test_single_char_signature_change_rejected() -> None:
    header = sign(BODY)
    last = header[-1]
    tampered = header[:-1] + ("0" if last != "0" else "1")
    assert verify_signature(BODY, tampered, SECRET) is False


def test_wrong_secret_rejected() -> None:
    assert verify_signature(BODY, sign(BODY, secret="whsec_other"), SECRET) is False


def test_timestamp_is_part_of_signed_payload() -> None:
    t = int(time.time())
    header = sign(BODY, t=t)
    mac = header.split("v1=")[1]
    assert verify_signature(BODY, f"t={t + 1},v1={mac}", SECRET) is False


def test_missing_parts_fail_closed() -> None:
    header = sign(BODY)
    t, v1 = header.split(",")
    assert verify_signature(BODY, v1, SECRET) is False
    assert verify_signature(BODY, t, SECRET) is False
    assert verify_signature(BODY, "", SECRET) is False
    assert verify_signature(BODY, header.replace(t, "t=abc"), SECRET) is False


def test_empty_secret_fails_closed() -> None:
    assert verify_signature(BODY, sign(BODY, secret=""), "") is False


def test_non_utf8_body_rejected() -> None:
    body = b"\xff\xfe\x00"
    assert verify_signature(body, sign(body), SECRET) is False


def test_old_timestamp_accepted_without_tolerance() -> None:
    header = sign(BODY, t=int(time.time()) - 3600)
    assert verify_signature(BODY, header, SECRET) is True
    assert verify_signature(BODY, header, SECRET, tolerance_seconds=0) is True


def test_old_timestamp_rejected_with_tolerance() -> None:
    header = sign(BODY, t=int(time.time()) - 3600)
    assert verify_signature(BODY, header, SECRET, tolerance_seconds=300) is False
    assert verify_signature(BODY, sign(BODY), SECRET, tolerance_seconds=300) is True


def test_whitespace_between_pairs_accepted() -> None:
    t, v1 = sign(BODY).split(",")
    assert verify_signature(BODY, f"{t}, {v1}", SECRET) is True
    assert verify_signature(BODY, f" {t} ,  v1=deadbeef, {v1} ", SECRET) is True
