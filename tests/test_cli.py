"""Tests for the operator command line."""

import json

import pytest

import accvault.config as config_mod
from accvault.__main__ import build_parser, main


@pytest.fixture(autouse=True)
def _settings(settings, monkeypatch):
    monkeypatch.setattr(config_mod, "_settings", settings)


def test_requires_command():
    with pytest.raises(SystemExit):
        build_parser().parse_args([])


def test_init_db(tmp_path, capsys):
    db_path = tmp_path / "cli" / "vault.db"
    assert main(["--db", str(db_path), "init-db"]) == 0
    assert db_path.exists()
    assert str(db_path) in capsys.readouterr().out


def test_export_import_roundtrip(db, admin, alice, tmp_path, capsys):
    out = tmp_path / "export.json"
    assert main(["--db", str(db.db_path), "export", "--out", str(out)]) == 0
    document = json.loads(out.read_text(encoding="utf-8"))
    assert {u["username"] for u in document["users"]} == {"admin", "alice"}

    target = tmp_path / "restored.db"
    assert main(["--db", str(target), "import", str(out), "--truncate"]) == 0
    counts = json.loads(capsys.readouterr().out.strip().splitlines()[-1])
    assert counts == {"users": 2, "accounts": 0, "secrets": 0}


def test_export_to_stdout(db, admin, capsys):
    assert main(["--db", str(db.db_path), "export"]) == 0
    document = json.loads(capsys.readouterr().out)
    assert document["admins"] == [{"user_id": admin.id}]


def test_import_bad_document(tmp_path, capsys):
    bad = tmp_path / "bad.json"
    bad.write_text(json.dumps({"users": [{"id": "x"}]}), encoding="utf-8")
    assert main(["--db", str(tmp_path / "v.db"), "import", str(bad)]) == 1
    assert "validation" in capsys.readouterr().err


def test_hash_password(monkeypatch, capsys, settings):
    from accvault.auth.passwords import PasswordHasher

    monkeypatch.setattr("getpass.getpass", lambda prompt="": "operator-password")
    assert main(["hash-password"]) == 0
    stored = capsys.readouterr().out.strip()
    assert stored.startswith(f"$pbkdf2${settings.server_hash_iterations}$")
    assert PasswordHasher().verify("operator-password", stored)


@pytest.mark.parametrize("document", ["[]", '"users"', "42"])
def test_import_truncate_needs_object(db, admin, tmp_path, capsys, document):
    source = tmp_path / "document.json"
    source.write_text(document, encoding="utf-8")
    assert main(["--db", str(db.db_path), "import", str(source), "--truncate"]) == 1
    err = capsys.readouterr().err
    assert "import document must be a JSON object (validation)" in err
    # Nothing was wiped
    assert main(["--db", str(db.db_path), "export"]) == 0
    assert len(json.loads(capsys.readouterr().out)["users"]) == 1


def test_import_invalid_json(tmp_path, capsys):
    source = tmp_path / "broken.json"
    source.write_text("{not json", encoding="utf-8")
    assert main(["--db", str(tmp_path / "v.db"), "import", str(source)]) == 1
    assert "is not valid JSON" in capsys.readouterr().err
