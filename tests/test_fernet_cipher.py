"""Tests for FernetCipher and canonical JSON."""

from __future__ import annotations

import pytest

from airflow_conn_crypto import (
    AuthenticationError,
    DecodingError,
    EncodingError,
    FernetCipher,
    InvalidKeyError,
    canonical_json,
    decrypt_string,
    is_valid_key,
)


def test_generate_produces_usable_key() -> None:
    cipher = FernetCipher.generate()

    assert is_valid_key(cipher.b64_key)
    assert len(cipher.key) == FernetCipher.KEY_SIZE_BYTES
    assert FernetCipher(cipher.b64_key).key == cipher.key


def test_tokens_interoperate_with_module_functions(key: str) -> None:
    cipher = FernetCipher(key)

    assert decrypt_string(cipher.encrypt("hello"), key) == "hello"


def test_fixed_iv_and_timestamp_are_reproducible(key: str) -> None:
    cipher = FernetCipher(key)
    iv = bytes(16)

    assert cipher.encrypt("x", iv=iv, timestamp=1) == cipher.encrypt("x", iv=iv, timestamp=1)


def test_invalid_key_is_rejected_at_construction() -> None:
    with pytest.raises(InvalidKeyError):
        FernetCipher("not-a-key")


def test_jsonable_round_trip(key: str) -> None:
    cipher = FernetCipher(key)
    value = {"b": [1, 2.5, None], "a": {"nested": True}, "text": "ünïcode"}

    assert cipher.decrypt_jsonable(cipher.encrypt_jsonable(value)) == value


def test_encrypt_jsonable_uses_canonical_form(key: str) -> None:
    cipher = FernetCipher(key)

    token = cipher.encrypt_jsonable({"b": 1, "a": 2})

    assert cipher.decrypt(token) == '{"a":2,"b":1}'


def test_decrypt_jsonable_rejects_non_json(key: str) -> None:
    cipher = FernetCipher(key)

    with pytest.raises(DecodingError):
        cipher.decrypt_jsonable(cipher.encrypt("not json"))


def test_decrypt_with_other_cipher_fails(key: str, other_key: str) -> None:
    token = FernetCipher(key).encrypt("secret")

    with pytest.raises(AuthenticationError):
        FernetCipher(other_key).decrypt(token)


def test_self_test_passes(key: str) -> None:
    assert FernetCipher(key).self_test()


def test_canonical_json_is_order_independent() -> None:
    assert canonical_json({"z": 1, "a": [3, {"y": 2, "b": 1}]}) == canonical_json({"a": [3, {"b": 1, "y": 2}], "z": 1})
    assert canonical_json({"z": 1, "a": None}) == '{"a":null,"z":1}'


def test_canonical_json_keeps_non_ascii() -> None:
    assert canonical_json({"k": "é"}) == '{"k":"é"}'


def test_canonical_json_rejects_unserializable() -> None:
    with pytest.raises(EncodingError):
        canonical_json({"k": {1, 2}})  # type: ignore[dict-item]
