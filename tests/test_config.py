import json

import pytest

from dbwarden.config import BackendKind, load_config
from dbwarden.credential_manager import CredentialManager
from dbwarden.errors import ConfigError


def _config(tmp_path, **overrides):
    data = {
        "backup_dir": str(tmp_path / "backups"),
        "backends": [
            {"name": "pg-main", "kind": "postgres", "host": "10.0.0.5", "username": "postgres", "password": "pw"},
            {"name": "maria", "kind": "mariadb", "host": "10.0.0.6", "username": "root", "password": "pw"},
            {"name": "mongo", "kind": "mongo", "host": "10.0.0.6", "username": "admin", "password": "pw"},
        ],
    }
    data.update(overrides)
    return data


def test_defaults_applied(tmp_path):
    config = load_config(_config(tmp_path))

    assert [b.kind for b in config.backends] == [BackendKind.POSTGRES, BackendKind.MARIADB, BackendKind.MONGO]
    assert [b.port for b in config.backends] == [5432, 3306, 27017]
    assert config.backup_retries == 2
    assert config.retry_base_delay == 2.0
    assert config.retry_max_delay == 30.0
    assert config.down_threshold == 3
    assert config.backends[0].poll_interval == 30.0
    assert config.backends[0].poll_timeout == 5.0


def test_password_is_not_exposed_in_repr(tmp_path):
    config = load_config(_config(tmp_path))
    backend = config.backend("pg-main")

    assert "pw" not in repr(backend)
    assert backend.secret() == "pw"


def test_config_is_frozen(tmp_path):
    config = load_config(_config(tmp_path))

    with pytest.raises(Exception):
        config.backends[0].host = "elsewhere"


def test_missing_host_rejected(tmp_path):
    data = _config(tmp_path)
    del data["backends"][1]["host"]

    with pytest.raises(ConfigError, match="host"):
        load_config(data)


def test_blank_username_rejected(tmp_path):
    data = _config(tmp_path)
    data["backends"][0]["username"] = "   "

    with pytest.raises(ConfigError, match="username"):
        load_config(data)


def test_unknown_kind_rejected(tmp_path):
    data = _config(tmp_path)
    data["backends"][0]["kind"] = "oracle"

    with pytest.raises(ConfigError):
        load_config(data)


def test_duplicate_names_rejected(tmp_path):
    data = _config(tmp_path)
    data["backends"][1]["name"] = "pg-main"

    with pytest.raises(ConfigError, match="duplicate backend names: pg-main"):
        load_config(data)


def test_empty_backend_list_rejected(tmp_path):
    with pytest.raises(ConfigError):
        load_config(_config(tmp_path, backends=[]))


def test_name_must_be_filename_safe(tmp_path):
    data = _config(tmp_path)
    data["backends"][0]["name"] = "../etc"

    with pytest.raises(ConfigError):
        load_config(data)


def test_load_from_json_file(tmp_path):
    path = tmp_path / "dbwarden.json"
    path.write_text(json.dumps(_config(tmp_path, backup_interval=3600)))

    config = load_config(path)

    assert config.backup_interval == 3600
    assert len(config.backends) == 3


def test_invalid_json_file(tmp_path):
    path = tmp_path / "broken.json"
    path.write_text("{not json")

    with pytest.raises(ConfigError, match="not valid JSON"):
        load_config(path)


def test_missing_file(tmp_path):
    with pytest.raises(ConfigError, match="Cannot read config file"):
        load_config(tmp_path / "absent.json")


def test_credentials_ref_from_env(tmp_path):
    data = _config(tmp_path)
    del data["backends"][0]["password"]
    data["backends"][0]["credentials_ref"] = "env:PG_MAIN_PASSWORD"

    config = load_config(data, environ={"PG_MAIN_PASSWORD": "from-env"})

    assert config.backend("pg-main").secret() == "from-env"


def test_credentials_ref_from_file(tmp_path):
    secret_file = tmp_path / "maria.secret"
    secret_file.write_text("from-file\n")
    data = _config(tmp_path)
    del data["backends"][1]["password"]
    data["backends"][1]["credentials_ref"] = f"file:{secret_file}"

    config = load_config(data)

    assert config.backend("maria").secret() == "from-file"


def test_unresolvable_credentials_ref_is_fatal(tmp_path):
    data = _config(tmp_path)
    del data["backends"][0]["password"]
    data["backends"][0]["credentials_ref"] = "env:NOT_SET_ANYWHERE"

    with pytest.raises(ConfigError, match="pg-main"):
        load_config(data, environ={})


def test_malformed_credentials_ref(tmp_path):
    data = _config(tmp_path)
    data["backends"][0]["credentials_ref"] = "vault:secret/pg"

    with pytest.raises(ConfigError):
        load_config(data)


def test_redact_masks_secrets():
    masked = CredentialManager.redact(["mongodump", "--password", "hunter2"], ["hunter2", ""])

    assert masked == "mongodump --password ********"
