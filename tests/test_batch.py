"""Tests for per-record batch results."""

from __future__ import annotations

import pytest

from airflow_conn_crypto import (
    CSV_HEADER_LINE,
    Connection,
    EmptyInputError,
    EncodingError,
    MalformedHeaderError,
    MalformedRowError,
    RowDecryptionError,
    decode_batch,
    encode_batch,
    encode_row,
    export_connections,
    import_connections,
)


def test_encode_batch_records_failures(pg1: Connection, key: str) -> None:
    broken = Connection("broken", password="lone \ud800")

    report = encode_batch([pg1, broken], key, prefix="x_")

    assert not report.ok
    assert report.summary() == "1 succeeded, 1 failed"
    assert [r.conn_id for r in report.succeeded] == ["x_pg1"]
    assert report.succeeded[0].record == pg1.with_prefix("x_")
    failure = report.first_error()
    assert failure is not None
    assert failure.conn_id == "x_broken"
    assert isinstance(failure.error, EncodingError)


def test_encode_batch_text_imports(pg1: Connection, key: str) -> None:
    report = encode_batch([pg1, Connection("broken", extra="\udfff")], key)

    assert import_connections(report.to_text(), key) == [pg1]


def test_to_text_requires_a_success(key: str) -> None:
    report = encode_batch([Connection("broken", extra="\udfff")], key)

    with pytest.raises(EmptyInputError):
        report.to_text()


def test_decode_batch_continues_past_bad_rows(pg1: Connection, key: str, other_key: str) -> None:
    text = "\n".join(
        [
            export_connections([pg1, pg1.with_conn_id("pg2")], key),
            encode_row(pg1.with_conn_id("foreign"), other_key),
            "one field only",
        ]
    )

    report = decode_batch(text, key)

    assert report.summary() == "2 succeeded, 2 failed"
    assert [r.record for r in report.succeeded] == [pg1, pg1.with_conn_id("pg2")]
    decrypt_failure, row_failure = report.failed
    assert decrypt_failure.conn_id == "foreign"
    assert decrypt_failure.line_number == 4
    assert isinstance(decrypt_failure.error, RowDecryptionError)
    assert row_failure.conn_id is None
    assert row_failure.line_number == 5
    assert isinstance(row_failure.error, MalformedRowError)


def test_decode_batch_all_good(pg1: Connection, key: str) -> None:
    report = decode_batch(export_connections([pg1], key), key)

    assert report.ok
    assert report.first_error() is None


def test_decode_batch_still_checks_file(key: str) -> None:
    with pytest.raises(MalformedHeaderError):
        decode_batch("nope\nrow,x", key)
    with pytest.raises(EmptyInputError):
        decode_batch(CSV_HEADER_LINE + "\n", key)
