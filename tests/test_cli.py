"""Tests for the airflow-conn-crypto command-line tool."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
import yaml

from airflow_conn_crypto import (
    KEY_ENV_VAR,
    PREFIX_ENV_VAR,
    Connection,
    FernetCipher,
    __version__,
    encode_row,
    is_valid_key,
    read_import_file,
)
from airflow_conn_crypto.__main__ import run


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv(KEY_ENV_VAR, raising=False)
    monkeypatch.delenv(PREFIX_ENV_VAR, raising=False)


@pytest.fixture
def connections_file(tmp_path: Path, pg1: Connection) -> Path:
    path = tmp_path / "connections.yaml"
    path.write_text(yaml.safe_dump([pg1.to_dict(), Connection("http_default", conn_type="http").to_dict()]))
    return path


def test_version(capsys: pytest.CaptureFixture[str]) -> None:
    assert run(["version"]) == 0
    assert json.loads(capsys.readouterr().out) == __version__


def test_generate_key(capsys: pytest.CaptureFixture[str]) -> None:
    assert run(["generate-key"]) == 0
    assert is_valid_key(capsys.readouterr().out.strip())


def test_validate_key(capsys: pytest.CaptureFixture[str], key: str) -> None:
    assert run(["validate-key", key]) == 0
    assert capsys.readouterr().out.strip() == "true"
    assert run(["validate-key", "bogus"]) == 1
    assert capsys.readouterr().out.strip() == "false"


def test_encrypt_then_decrypt(capsys: pytest.CaptureFixture[str], key: str) -> None:
    assert run(["-k", key, "encrypt", "hello"]) == 0
    token = capsys.readouterr().out.strip()

    assert run(["-k", key, "-r", "decrypt", token]) == 0
    assert capsys.readouterr().out == "hello"
    assert run(["-k", key, "decrypt", token]) == 0
    assert json.loads(capsys.readouterr().out) == "hello"


def test_decrypt_shows_timestamp(capsys: pytest.CaptureFixture[str], key: str) -> None:
    token = FernetCipher(key).encrypt("hello", timestamp=1234)

    assert run(["-k", key, "decrypt", "--show-timestamp", token]) == 0
    assert json.loads(capsys.readouterr().out) == {"plaintext": "hello", "timestamp": 1234}


def test_encrypt_json_is_canonical(capsys: pytest.CaptureFixture[str], key: str) -> None:
    assert run(["-k", key, "encrypt", "--json", '{"b": 1, "a": 2}']) == 0
    token = capsys.readouterr().out.strip()

    assert FernetCipher(key).decrypt(token) == '{"a":2,"b":1}'


def test_key_from_environment(
    capsys: pytest.CaptureFixture[str], monkeypatch: pytest.MonkeyPatch, key: str
) -> None:
    monkeypatch.setenv(KEY_ENV_VAR, key)

    assert run(["encrypt", "hello"]) == 0
    assert FernetCipher(key).decrypt(capsys.readouterr().out.strip()) == "hello"


def test_key_from_config_file(capsys: pytest.CaptureFixture[str], tmp_path: Path, key: str) -> None:
    config = tmp_path / "config.yaml"
    config.write_text(yaml.safe_dump({"file_key": key}))

    assert run(["-C", str(config), "encrypt", "hello"]) == 0
    assert FernetCipher(key).decrypt(capsys.readouterr().out.strip()) == "hello"


def test_missing_key(capsys: pytest.CaptureFixture[str]) -> None:
    assert run(["encrypt", "hello"]) == 1
    assert KEY_ENV_VAR in capsys.readouterr().err


def test_wrong_key_is_reported_as_authentication_failure(
    capsys: pytest.CaptureFixture[str], key: str, other_key: str
) -> None:
    token = FernetCipher(key).encrypt("hello")

    assert run(["-k", other_key, "decrypt", token]) == 1
    assert "authentication failed" in capsys.readouterr().err


def test_invalid_key_is_reported_as_such(capsys: pytest.CaptureFixture[str]) -> None:
    assert run(["-k", "bogus", "encrypt", "hello"]) == 1
    assert "invalid key" in capsys.readouterr().err


def test_export_and_import(
    capsys: pytest.CaptureFixture[str], tmp_path: Path, connections_file: Path, key: str, pg1: Connection
) -> None:
    out = tmp_path / "out.csv"

    assert run(["-k", key, "export", "--prefix", "dev_", str(connections_file), str(out)]) == 0
    assert "Exported 2 connection(s)" in capsys.readouterr().err
    assert [c.conn_id for c in read_import_file(str(out), key)] == ["dev_pg1", "dev_http_default"]

    assert run(["-k", key, "import", str(out)]) == 0
    records = json.loads(capsys.readouterr().out)
    assert records[0] == pg1.with_prefix("dev_").to_dict()


def test_export_prefix_from_environment(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path, connections_file: Path, key: str
) -> None:
    monkeypatch.setenv(PREFIX_ENV_VAR, "env_")
    out = tmp_path / "out.csv"

    assert run(["-k", key, "export", str(connections_file), str(out)]) == 0
    assert read_import_file(str(out), key)[0].conn_id == "env_pg1"


def test_export_rejects_long_prefix(
    capsys: pytest.CaptureFixture[str], tmp_path: Path, connections_file: Path, key: str
) -> None:
    out = tmp_path / "out.csv"

    assert run(["-k", key, "export", "--prefix", "x" * 11, str(connections_file), str(out)]) == 1
    assert not out.exists()
    assert "10 characters" in capsys.readouterr().err


def test_store_key_reencrypts_fields(
    capsys: pytest.CaptureFixture[str], tmp_path: Path, key: str, other_key: str, pg1: Connection
) -> None:
    source_store_key = FernetCipher.generate().b64_key
    source = tmp_path / "source.yaml"
    source.write_text(yaml.safe_dump([pg1.encrypt_stored_fields(source_store_key).to_dict()]))
    out = tmp_path / "out.csv"

    assert run(["-k", key, "export", "--store-key", source_store_key, str(source), str(out)]) == 0
    assert read_import_file(str(out), key) == [pg1]

    assert run(["-k", key, "import", "--store-key", other_key, str(out)]) == 0
    imported = Connection.from_dict(json.loads(capsys.readouterr().out)[0])
    assert imported.password != pg1.password
    assert imported.decrypt_stored_fields(other_key) == pg1


def test_import_plan_with_skip(
    capsys: pytest.CaptureFixture[str], tmp_path: Path, connections_file: Path, key: str
) -> None:
    out = tmp_path / "out.csv"
    assert run(["-k", key, "export", str(connections_file), str(out)]) == 0
    capsys.readouterr()

    assert run(["-k", key, "import", "--existing", "pg1", "--strategy", "skip", str(out)]) == 0
    plan = json.loads(capsys.readouterr().out)

    assert plan["strategy"] == "skip"
    assert [c["conn_id"] for c in plan["insert"]] == ["http_default"]
    assert plan["reject"] == ["pg1"]
    assert plan["collisions"] == ["pg1"]


def test_import_stops_on_collision(
    capsys: pytest.CaptureFixture[str], tmp_path: Path, connections_file: Path, key: str
) -> None:
    out = tmp_path / "out.csv"
    existing = tmp_path / "existing.txt"
    existing.write_text("http_default\n\n")
    assert run(["-k", key, "export", str(connections_file), str(out)]) == 0
    capsys.readouterr()

    assert run(["-k", key, "import", "--existing-file", str(existing), str(out)]) == 1
    captured = capsys.readouterr()
    assert captured.out == ""
    assert "http_default" in captured.err


def test_import_keep_going(
    capsys: pytest.CaptureFixture[str], tmp_path: Path, connections_file: Path, key: str, other_key: str
) -> None:
    out = tmp_path / "out.csv"
    assert run(["-k", key, "export", str(connections_file), str(out)]) == 0
    with open(out, "a", encoding="utf-8") as f:
        f.write("\n" + encode_row(Connection("foreign"), other_key))
    capsys.readouterr()

    assert run(["-k", key, "import", str(out)]) == 1
    assert "foreign" in capsys.readouterr().err

    assert run(["-k", key, "import", "--keep-going", str(out)]) == 1
    captured = capsys.readouterr()
    assert [c["conn_id"] for c in json.loads(captured.out)] == ["pg1", "http_default"]
    assert "line 4" in captured.err


def test_output_file(tmp_path: Path, key: str) -> None:
    target = tmp_path / "token.txt"

    assert run(["-k", key, "-o", str(target), "encrypt", "hello"]) == 0
    assert FernetCipher(key).decrypt(target.read_text().strip()) == "hello"


def test_no_command(capsys: pytest.CaptureFixture[str]) -> None:
    assert run([]) == 1
    assert "command is required" in capsys.readouterr().err
