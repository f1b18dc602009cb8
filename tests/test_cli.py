import json

import pytest

import scim_cli
from scim_provisioning.models import USER_SCHEMA


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "scim-config.json"
    path.write_text(json.dumps({
        "base_url": "https://lms.example.com",
        "base_path": "/scim",
        "max_results": 10,
        "store_path": str(tmp_path / "users.json"),
        "clients": [{"client_id": "idp", "client_secret": "secret"}],
    }), encoding="utf-8")
    return str(path)


@pytest.fixture
def user_file(tmp_path, sample_user):
    path = tmp_path / "user.json"
    path.write_text(json.dumps(sample_user), encoding="utf-8")
    return str(path)


def _run(capsys, *argv) -> tuple[int, str]:
    code = scim_cli.main(list(argv))
    return code, capsys.readouterr().out


def _created_id(capsys, config_file, user_file) -> str:
    code, _ = _run(capsys, "--config", config_file, "user", "create", user_file)
    assert code == 0
    code, out = _run(capsys, "--config", config_file, "user", "list", "--format", "json")
    return json.loads(out)[0]["id"]


def test_missing_config_exits(tmp_path):
    with pytest.raises(SystemExit) as exc:
        scim_cli.main(["--config", str(tmp_path / "missing.json"), "config"])
    assert exc.value.code == 1


def test_config_command(capsys, config_file):
    code, out = _run(capsys, "--config", config_file, "config")
    assert code == 0
    assert json.loads(out)["filter"]["maxResults"] == 10


def test_filter_command(capsys):
    code, out = _run(capsys, "filter", 'userName sw "jo_n"')
    assert code == 0
    parsed = json.loads(out)
    assert parsed["field"] == "username"
    assert parsed["operator"] == "sw"
    assert parsed["literal"] == "jo_n"
    assert parsed["pattern"] == "jo\\_n%"


def test_filter_command_rejects_unsupported_operator(capsys):
    code, out = _run(capsys, "filter", 'userName gt "x"')
    assert code == 1
    assert "invalidFilter" in out


def test_schema_commands(capsys, config_file):
    code, out = _run(capsys, "--config", config_file, "schema", "list", "--format", "json")
    assert code == 0
    assert len(json.loads(out)) == 3

    code, out = _run(capsys, "--config", config_file, "schema", "get", USER_SCHEMA)
    assert code == 0
    assert json.loads(out)["id"] == USER_SCHEMA

    code, _ = _run(capsys, "--config", config_file, "schema", "get", "urn:nope")
    assert code == 1


def test_client_new(capsys):
    code, out = _run(capsys, "client", "new", "--organization", "acme")
    assert code == 0
    client = json.loads(out)
    assert len(client["client_id"]) == 20
    assert len(client["client_secret"]) == 48
    assert client["organization"] == "acme"


def test_user_lifecycle(capsys, config_file, user_file):
    external_id = _created_id(capsys, config_file, user_file)

    code, out = _run(capsys, "--config", config_file, "user", "get", external_id)
    assert code == 0
    assert json.loads(out)["userName"] == "john.doe@example.com"

    code, out = _run(capsys, "--config", config_file, "user", "list",
                     "--filter", 'userName eq "JOHN.DOE@example.com"', "--format", "json")
    assert [u["id"] for u in json.loads(out)] == [external_id]

    code, _ = _run(capsys, "--config", config_file, "user", "deactivate", external_id)
    assert code == 0
    code, out = _run(capsys, "--config", config_file, "user", "get", external_id)
    assert json.loads(out)["active"] is False


def test_user_create_reports_duplicates(capsys, config_file, user_file):
    _created_id(capsys, config_file, user_file)
    code, out = _run(capsys, "--config", config_file, "user", "create", user_file)
    assert code == 1
    assert "User already exists." in out


def test_user_get_unknown(capsys, config_file):
    code, out = _run(capsys, "--config", config_file, "user", "get", "NOPE")
    assert code == 1
    assert "User NOPE not found" in out


def test_logs_go_to_stderr(capsys, config_file, user_file):
    _created_id(capsys, config_file, user_file)
    scim_cli.main(["--config", config_file, "user", "list", "--format", "json"])
    captured = capsys.readouterr()
    assert len(json.loads(captured.out)) == 1
    assert "user_store_loaded" in captured.err
