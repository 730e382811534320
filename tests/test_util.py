"""Tests for the Fernet token functions."""

from __future__ import annotations

import base64
import os
from pathlib import Path

import pytest

from airflow_conn_crypto import (
    AuthenticationError,
    DecodingError,
    EmptyInputError,
    EncodingError,
    InvalidKeyError,
    decode_key,
    decrypt_string,
    encrypt_string,
    extract_timestamp,
    generate_key,
    is_valid_key,
)
from airflow_conn_crypto.util import atomic_write_text, normalize_b64, split_key

# Published Fernet test vector
VECTOR_KEY = "cw_0x689RpI-jtRR7oE8h_eQsKImvJapLeSbXpwF4e4="
VECTOR_IV = bytes(range(16))
VECTOR_TIMESTAMP = 499162800
VECTOR_TOKEN = (
    "gAAAAAAdwJ6wAAECAwQFBgcICQoLDA0ODy021cpGVWKZ_eEwCGM4BLLF_5CV9dOPmrhuVUPgJobwOz7JcbmrR64jVmpU4IwqDA=="
)


def _flip_bit(token: str, index: int) -> str:
    data = bytearray(base64.urlsafe_b64decode(token))
    data[index] ^= 0x01
    return base64.urlsafe_b64encode(bytes(data)).decode("ascii")


def test_round_trip(key: str) -> None:
    token = encrypt_string("hello, world", key)

    assert decrypt_string(token, key) == "hello, world"


def test_round_trip_preserves_unicode(key: str) -> None:
    plaintext = "pässwörd ☃ \U0001f511"

    assert decrypt_string(encrypt_string(plaintext, key), key) == plaintext


def test_encryption_is_not_deterministic(key: str) -> None:
    assert encrypt_string("same", key) != encrypt_string("same", key)


def test_matches_published_vector() -> None:
    token = encrypt_string("hello", VECTOR_KEY, iv=VECTOR_IV, timestamp=VECTOR_TIMESTAMP)

    assert token == VECTOR_TOKEN
    assert decrypt_string(VECTOR_TOKEN, VECTOR_KEY) == "hello"


def test_extract_timestamp_reads_header() -> None:
    assert extract_timestamp(VECTOR_TOKEN) == VECTOR_TIMESTAMP


def test_tokens_are_urlsafe_and_start_with_version(key: str) -> None:
    token = encrypt_string("x" * 100, key)

    assert "+" not in token and "/" not in token
    assert base64.urlsafe_b64decode(token)[0] == 0x80


@pytest.mark.parametrize("index", [9, 30, -1])
def test_tampered_token_fails_authentication(key: str, index: int) -> None:
    token = _flip_bit(encrypt_string("hello", key), index)

    with pytest.raises(AuthenticationError):
        decrypt_string(token, key)


def test_wrong_key_fails_authentication(key: str, other_key: str) -> None:
    token = encrypt_string("hello", key)

    with pytest.raises(AuthenticationError):
        decrypt_string(token, other_key)


def test_key_alphabets_are_interchangeable() -> None:
    standard_key = VECTOR_KEY.replace("-", "+").replace("_", "/")

    assert decode_key(standard_key) == decode_key(VECTOR_KEY)
    assert decrypt_string(VECTOR_TOKEN, standard_key) == "hello"
    assert decrypt_string(VECTOR_TOKEN, VECTOR_KEY.rstrip("=")) == "hello"


def test_token_alphabets_are_interchangeable() -> None:
    standard_token = VECTOR_TOKEN.replace("-", "+").replace("_", "/")

    assert decrypt_string(standard_token, VECTOR_KEY) == "hello"


def test_raw_key_bytes_are_accepted() -> None:
    raw = decode_key(VECTOR_KEY)

    assert len(raw) == 32
    assert decrypt_string(VECTOR_TOKEN, raw) == "hello"


def test_split_key_is_positional() -> None:
    raw = bytes(range(32))

    assert split_key(raw) == (bytes(range(16)), bytes(range(16, 32)))


@pytest.mark.parametrize(
    "bad_key",
    ["", "short", "not base64 at all!!", base64.b64encode(b"x" * 31).decode(), base64.b64encode(b"x" * 33).decode()],
)
def test_invalid_keys_are_rejected(bad_key: str) -> None:
    assert not is_valid_key(bad_key)
    with pytest.raises(InvalidKeyError):
        encrypt_string("hello", bad_key)
    with pytest.raises(InvalidKeyError):
        decrypt_string(VECTOR_TOKEN, bad_key)


def test_generated_keys_are_valid_and_distinct() -> None:
    keys = {generate_key() for _ in range(10)}

    assert len(keys) == 10
    assert all(is_valid_key(k) for k in keys)


def test_empty_plaintext_is_rejected(key: str) -> None:
    with pytest.raises(EmptyInputError):
        encrypt_string("", key)


@pytest.mark.parametrize("token", ["", "   "])
def test_empty_token_is_rejected(key: str, token: str) -> None:
    with pytest.raises(EmptyInputError):
        decrypt_string(token, key)


def test_unencodable_plaintext_is_rejected(key: str) -> None:
    with pytest.raises(EncodingError):
        encrypt_string("lone \ud800 surrogate", key)


def test_bad_iv_length_is_rejected(key: str) -> None:
    with pytest.raises(EncodingError):
        encrypt_string("hello", key, iv=b"short")


def test_short_token_is_a_decoding_error(key: str) -> None:
    data = base64.urlsafe_b64decode(encrypt_string("hello", key))
    assert len(data) == 73
    short = base64.urlsafe_b64encode(data[:72]).decode("ascii")

    with pytest.raises(DecodingError):
        decrypt_string(short, key)


def test_wrong_version_is_a_decoding_error(key: str) -> None:
    data = bytearray(base64.urlsafe_b64decode(encrypt_string("hello", key)))
    data[0] = 0x81
    token = base64.urlsafe_b64encode(bytes(data)).decode("ascii")

    with pytest.raises(DecodingError):
        decrypt_string(token, key)


def test_non_base64_token_is_a_decoding_error(key: str) -> None:
    with pytest.raises(DecodingError):
        decrypt_string("this is *not* a token", key)


def test_extract_timestamp_rejects_garbage() -> None:
    with pytest.raises(DecodingError):
        extract_timestamp("AAAA")


def test_normalize_b64_maps_alphabet_and_padding() -> None:
    assert normalize_b64("ab-_") == "ab+/"
    assert normalize_b64(" abc ") == "abc="
    assert normalize_b64("ab") == "ab=="


def test_atomic_write_replaces_contents(tmp_path: Path) -> None:
    target = tmp_path / "out.csv"
    target.write_text("old")

    atomic_write_text(str(target), "new\r\ncontents", mode=0o600)

    assert target.read_bytes() == b"new\r\ncontents"
    assert os.listdir(tmp_path) == ["out.csv"]
    if os.name == "posix":
        assert target.stat().st_mode & 0o777 == 0o600
