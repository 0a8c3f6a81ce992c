"""Tests for chatbox.config: YAML loading, defaults, secrets and overrides."""
import pytest
from pydantic import ValidationError

from chatbox.config import (
    JWT_SECRET_ENV,
    AppConfig,
    DatabaseSettings,
    get_config,
    load_config,
    reset_config,
    set_config,
)


@pytest.fixture(autouse=True)
def _no_env_secret(monkeypatch):
    monkeypatch.delenv(JWT_SECRET_ENV, raising=False)
    yield
    reset_config()


class TestDefaults:
    def test_missing_files_fall_back_to_defaults(self, tmp_path):
        cfg = load_config(tmp_path / "absent.settings.yaml")
        assert cfg.server.port == 4004
        assert cfg.database.path == "chatbox.duckdb"
        assert cfg.database.persist_timeout_seconds == 5.0
        assert cfg.auth.token_expire_days == 30
        assert cfg.chat.require_register_token is False
        assert cfg.secrets.jwt.algorithm == "HS256"

    def test_timeout_must_be_positive(self):
        with pytest.raises(ValidationError):
            DatabaseSettings(persist_timeout_seconds=0)


class TestLoadConfig:
    def test_reads_settings_and_sibling_secrets(self, tmp_path):
        settings = tmp_path / "chatbox.settings.yaml"
        settings.write_text(
            "server:\n"
            "  port: 9000\n"
            "database:\n"
            "  path: /tmp/chat.duckdb\n"
            "  persist_timeout_seconds: 2.5\n"
            "chat:\n"
            "  require_register_token: true\n"
            "logging:\n"
            "  level: debug\n"
        )
        (tmp_path / "chatbox.secrets.yaml").write_text(
            "jwt:\n"
            "  secret_key: from-secrets-file\n"
        )

        cfg = load_config(settings)

        assert cfg.server.port == 9000
        assert cfg.database.path == "/tmp/chat.duckdb"
        assert cfg.database.persist_timeout_seconds == 2.5
        assert cfg.chat.require_register_token is True
        assert cfg.logging.level == "debug"
        assert cfg.secrets.jwt.secret_key == "from-secrets-file"

    def test_explicit_secrets_path(self, tmp_path):
        secrets = tmp_path / "elsewhere.yaml"
        secrets.write_text("jwt:\n  secret_key: explicit\n")
        cfg = load_config(tmp_path / "none.yaml", secrets)
        assert cfg.secrets.jwt.secret_key == "explicit"

    def test_env_overrides_jwt_secret(self, tmp_path, monkeypatch):
        (tmp_path / "chatbox.secrets.yaml").write_text("jwt:\n  secret_key: file\n")
        monkeypatch.setenv(JWT_SECRET_ENV, "from-env")
        cfg = load_config(tmp_path / "chatbox.settings.yaml")
        assert cfg.secrets.jwt.secret_key == "from-env"

    def test_empty_yaml_is_treated_as_defaults(self, tmp_path):
        settings = tmp_path / "chatbox.settings.yaml"
        settings.write_text("")
        cfg = load_config(settings)
        assert cfg.server.host == "0.0.0.0"


class TestProcessConfig:
    def test_set_and_get(self):
        cfg = AppConfig(database=DatabaseSettings(path=":memory:"))
        set_config(cfg)
        assert get_config() is cfg
