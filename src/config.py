import os
import tomllib
from pathlib import Path
from pydantic import BaseModel
from dotenv import load_dotenv


# ------------------------------------------------------------
# Project root finder
# ------------------------------------------------------------
def find_project_root() -> Path:
    p = Path(__file__).resolve()
    for parent in [p] + list(p.parents):
        if (parent / "pyproject.toml").exists():
            return parent
    raise RuntimeError("Project root not found")

PROJECT_ROOT = find_project_root()


# ------------------------------------------------------------
# Pydantic models
# ------------------------------------------------------------
class DatabaseConfig(BaseModel):
    host: str
    port: int
    user: str
    password: str | None = None
    database: str
    max_connections: int


class BootstrapConfig(BaseModel):
    admin_username: str = "admin"
    admin_password: str = "admin"
    admin_name: str = "Administrator"


class BrandingConfig(BaseModel):
    company_name: str = "Jurbot"
    ai_name: str = "Jurbot"
    user_name: str = "Anonym"
    theme: str = "winter"
    default_webhook_url: str = ""


class UploadsConfig(BaseModel):
    directory: str = "uploads"
    url_prefix: str = "/uploads"
    max_logo_bytes: int = 1024 * 1024

    @property
    def path(self) -> Path:
        p = Path(self.directory)
        return p if p.is_absolute() else PROJECT_ROOT / p


class ChatSourceConfig(BaseModel):
    timeout_seconds: float = 10.0


class AnalyticsConfig(BaseModel):
    timezone: str = "UTC"


class Config(BaseModel):
    database: DatabaseConfig
    bootstrap: BootstrapConfig = BootstrapConfig()
    branding: BrandingConfig = BrandingConfig()
    uploads: UploadsConfig = UploadsConfig()
    chat_source: ChatSourceConfig = ChatSourceConfig()
    analytics: AnalyticsConfig = AnalyticsConfig()


# ------------------------------------------------------------
# Internal loader
# ------------------------------------------------------------
def _load_config_from(path: Path) -> Config:
    if not path.exists():
        raise RuntimeError(f"Config file not found: {path}")

    with path.open("rb") as f:
        data = tomllib.load(f)

    cfg = Config(**data)

    # Load secrets
    load_dotenv(PROJECT_ROOT / ".env")

    db_pwd = os.environ.get("DASHBOARD_DB_PASSWORD")
    if db_pwd:
        cfg.database.password = db_pwd

    return cfg


# ------------------------------------------------------------
# Public API
# ------------------------------------------------------------
def load_config(path: Path | None = None) -> Config:
    if path is None:
        path = PROJECT_ROOT / "config.toml"
    return _load_config_from(path)


# ------------------------------------------------------------
# Lazy singleton
# ------------------------------------------------------------
_config: Config | None = None

def get_config() -> Config:
    global _config
    if _config is None:
        _config = load_config()
    return _config
