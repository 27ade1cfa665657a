import tomllib
from pathlib import Path

import pytest

from src.config import Config, DatabaseConfig, UploadsConfig, PROJECT_ROOT, load_config


def _write_config(tmp_path: Path, content: str) -> Path:
    cfg = tmp_path / "config.toml"
    cfg.write_text(content, encoding="utf-8")
    return cfg


def _load_config_from(path: Path) -> Config:
    with path.open("rb") as f:
        data = tomllib.load(f)
    return Config(**data)


def test_full_config(tmp_path: Path):
    content = """
[database]
host = "localhost"
port = 5432
user = "chatdash"
password = "dev_pass"
database = "chatdash"
max_connections = 10

[bootstrap]
admin_username = "root"
admin_password = "changeme"
admin_name = "Root"

[branding]
company_name = "Acme"
ai_name = "Acme Bot"
user_name = "Guest"
theme = "dark"
default_webhook_url = "https://example.com/hook"

[uploads]
directory = "/var/lib/chatdash/uploads"
url_prefix = "/files"
max_logo_bytes = 2048

[chat_source]
timeout_seconds = 3.5

[analytics]
timezone = "Europe/Berlin"
"""
    cfg = _load_config_from(_write_config(tmp_path, content))

    assert isinstance(cfg.database, DatabaseConfig)
    assert cfg.database.port == 5432
    assert cfg.database.password == "dev_pass"
    assert cfg.bootstrap.admin_username == "root"
    assert cfg.branding.theme == "dark"
    assert cfg.branding.default_webhook_url == "https://example.com/hook"
    assert cfg.uploads.max_logo_bytes == 2048
    assert cfg.uploads.path == Path("/var/lib/chatdash/uploads")
    assert cfg.chat_source.timeout_seconds == 3.5
    assert cfg.analytics.timezone == "Europe/Berlin"


def test_optional_sections_default(tmp_path: Path):
    content = """
[database]
host = "localhost"
port = 5432
user = "chatdash"
database = "chatdash"
max_connections = 5
"""
    cfg = _load_config_from(_write_config(tmp_path, content))

    assert cfg.database.password is None
    assert cfg.bootstrap.admin_username == "admin"
    assert cfg.branding.company_name == "Jurbot"
    assert cfg.branding.theme == "winter"
    assert cfg.uploads.max_logo_bytes == 1024 * 1024
    assert cfg.analytics.timezone == "UTC"


def test_relative_upload_dir_resolves_under_project_root():
    uploads = UploadsConfig(directory="uploads")
    assert uploads.path == PROJECT_ROOT / "uploads"


def test_missing_database_section_fails(tmp_path: Path):
    content = """
[branding]
company_name = "Acme"
"""
    with pytest.raises(Exception):
        _load_config_from(_write_config(tmp_path, content))


def test_invalid_toml_raises(tmp_path: Path):
    bad = tmp_path / "bad.toml"
    bad.write_text(
        """
[database
host = "oops"
""",
        encoding="utf-8",
    )

    with pytest.raises(Exception):
        with bad.open("rb") as f:
            tomllib.load(f)


def test_type_validation_for_database(tmp_path: Path):
    content = """
[database]
host = "localhost"
port = "not-an-int"
user = "chatdash"
database = "chatdash"
max_connections = 10
"""
    with pytest.raises(Exception):
        _load_config_from(_write_config(tmp_path, content))


def test_load_config_missing_file(tmp_path: Path):
    with pytest.raises(RuntimeError, match="Config file not found"):
        load_config(tmp_path / "nope.toml")


def test_password_from_environment(tmp_path: Path, monkeypatch):
    content = """
[database]
host = "localhost"
port = 5432
user = "chatdash"
database = "chatdash"
max_connections = 5
"""
    monkeypatch.setenv("DASHBOARD_DB_PASSWORD", "from-env")
    cfg = load_config(_write_config(tmp_path, content))

    assert cfg.database.password == "from-env"
