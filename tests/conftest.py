"""Shared fixtures for the airflow_conn_crypto tests."""

from __future__ import annotations

import pytest

from airflow_conn_crypto import Connection, generate_key


@pytest.fixture
def key() -> str:
    return generate_key()


@pytest.fixture
def other_key() -> str:
    return generate_key()


@pytest.fixture
def pg1() -> Connection:
    return Connection(
        conn_id="pg1",
        conn_type="postgres",
        host="db.example.com",
        schema="analytics",
        login="airflow",
        password="s3cr3t",
        port=5432,
        is_encrypted=True,
        is_extra_encrypted=False,
        extra='{"sslmode": "require"}',
    )
