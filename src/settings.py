"""
Branding and appearance settings.

Settings are stored as append-only snapshots; the row with the highest id
is the current record. Every update goes through `reconcile`, the single
policy that decides who may change what:

- a patch holding only `theme` is allowed for any authenticated caller
  and leaves every other field untouched
- any other patch requires the admin role
- the result is the current record overlaid with the patch keys (shallow)
"""

import logging
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Optional

from pydantic import BaseModel

from db.db import get_conn, put_conn
from src.auth import Role
from src.uploads import save_logo, remove_logo

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# ERRORS
# ═══════════════════════════════════════════════════════════════════════════

class SettingsError(Exception):
    """Base exception for settings operations."""
    pass


class ForbiddenUpdateError(SettingsError):
    """Caller's role does not allow this update."""
    pass


class ConfigurationMissingError(SettingsError):
    """No settings snapshot exists to update."""
    pass


class InvalidSettingsError(SettingsError):
    """Patch contains unknown keys or invalid values."""
    pass


# ═══════════════════════════════════════════════════════════════════════════
# MODELS
# ═══════════════════════════════════════════════════════════════════════════

class Theme(str, Enum):
    LIGHT = "light"
    DARK = "dark"
    CUPCAKE = "cupcake"
    CORPORATE = "corporate"
    RETRO = "retro"
    CYBERPUNK = "cyberpunk"
    VALENTINE = "valentine"
    GARDEN = "garden"
    FOREST = "forest"
    AQUA = "aqua"
    PASTEL = "pastel"
    FANTASY = "fantasy"
    DRACULA = "dracula"
    AUTUMN = "autumn"
    BUSINESS = "business"
    WINTER = "winter"


class Settings(BaseModel):
    """The logical settings record."""

    logo_url: Optional[str] = None
    company_name: str
    ai_name: str
    user_name: str
    webhook_url: str
    theme: Theme


class SettingsSnapshot(Settings):
    """A persisted settings row."""

    id: int
    created_at: Optional[datetime] = None


SETTINGS_FIELDS = tuple(Settings.model_fields)
REQUIRED_FIELDS = ("company_name", "ai_name", "user_name", "webhook_url", "theme")


# ═══════════════════════════════════════════════════════════════════════════
# RECONCILER
# ═══════════════════════════════════════════════════════════════════════════

def is_theme_only(patch: dict[str, Any]) -> bool:
    """A patch is theme-only iff its sole key is 'theme'."""
    return len(patch) == 1 and "theme" in patch


def _parse_theme(value: Any) -> Theme:
    try:
        return Theme(value)
    except ValueError:
        raise InvalidSettingsError(f"Unknown theme: {value!r}")


def reconcile(
    current: Optional[Settings],
    caller_role: Role,
    patch: dict[str, Any],
    has_new_logo: bool = False,
) -> Settings:
    """
    Compute the settings that result from applying `patch` as `caller_role`.

    Pure: no storage or file access. A new logo upload turns any patch into
    a full update.

    Raises:
        ConfigurationMissingError: If there is no current record
        ForbiddenUpdateError: If a non-admin submits anything but {theme}
        InvalidSettingsError: If the patch has unknown keys, an unknown
            theme, or leaves a required field empty
    """
    if current is None:
        raise ConfigurationMissingError("Settings have not been initialized")

    merged = current.model_dump(include=set(SETTINGS_FIELDS))

    if is_theme_only(patch) and not has_new_logo:
        merged["theme"] = _parse_theme(patch["theme"])
        return Settings(**merged)

    if caller_role != Role.ADMIN:
        raise ForbiddenUpdateError("Only admins can change settings other than the theme")

    unknown = set(patch) - set(SETTINGS_FIELDS)
    if unknown:
        raise InvalidSettingsError(f"Unknown settings keys: {', '.join(sorted(unknown))}")

    merged.update(patch)
    merged["theme"] = _parse_theme(merged["theme"])

    for field in REQUIRED_FIELDS:
        if field not in patch:
            continue
        value = merged.get(field)
        if not isinstance(value, (str, Theme)) or not str(value).strip():
            raise InvalidSettingsError(f"'{field}' must be a non-empty string")

    logo_url = merged.get("logo_url")
    if logo_url is not None and not isinstance(logo_url, str):
        raise InvalidSettingsError("'logo_url' must be a string")
    merged["logo_url"] = logo_url or None

    return Settings(**merged)


# ═══════════════════════════════════════════════════════════════════════════
# STORAGE
# ═══════════════════════════════════════════════════════════════════════════

_COLUMNS = "id, logo_url, company_name, ai_name, user_name, webhook_url, theme, created_at"


def _row_to_snapshot(row) -> SettingsSnapshot:
    return SettingsSnapshot(
        id=row[0],
        logo_url=row[1],
        company_name=row[2],
        ai_name=row[3],
        user_name=row[4],
        webhook_url=row[5],
        theme=Theme(row[6]),
        created_at=row[7],
    )


def get_settings() -> Optional[SettingsSnapshot]:
    """Return the newest settings snapshot, or None if none exist."""
    conn = get_conn()
    try:
        with conn.cursor() as cur:
            cur.execute(f"SELECT {_COLUMNS} FROM settings ORDER BY id DESC LIMIT 1")
            row = cur.fetchone()
            return _row_to_snapshot(row) if row else None
    finally:
        put_conn(conn)


def insert_snapshot(settings: Settings) -> SettingsSnapshot:
    """Append a settings snapshot; it becomes the current record."""
    conn = get_conn()
    try:
        with conn.cursor() as cur:
            cur.execute(
                f"""
                INSERT INTO settings (logo_url, company_name, ai_name, user_name, webhook_url, theme)
                VALUES (%s, %s, %s, %s, %s, %s)
                RETURNING {_COLUMNS}
                """,
                (
                    settings.logo_url,
                    settings.company_name,
                    settings.ai_name,
                    settings.user_name,
                    settings.webhook_url,
                    settings.theme.value,
                )
            )
            snapshot = _row_to_snapshot(cur.fetchone())
        conn.commit()
        logger.info(f"Wrote settings snapshot {snapshot.id}")
        return snapshot
    except Exception:
        conn.rollback()
        raise
    finally:
        put_conn(conn)


def ensure_settings(defaults: Settings) -> bool:
    """
    Seed the baseline snapshot if the table is empty.

    Returns True if a snapshot was written.
    """
    if get_settings() is not None:
        return False
    insert_snapshot(defaults)
    logger.info("Seeded default settings")
    return True


def update_settings(
    caller_role: Role,
    patch: dict[str, Any],
    logo: Optional[bytes] = None,
    logo_filename: Optional[str] = None,
    on_stale_logo: Callable[[Optional[str]], None] = remove_logo,
) -> SettingsSnapshot:
    """
    Apply a settings patch on behalf of a caller and persist the result.

    Authorization is decided before any file is written. When a new logo
    replaces an old one, `on_stale_logo` receives the old reference after
    the new snapshot is stored; its outcome never affects the update.
    """
    current = get_settings()
    has_new_logo = logo is not None

    # Authorize against the bare patch before touching the filesystem.
    reconcile(current, caller_role, patch, has_new_logo=has_new_logo)

    patch = dict(patch)
    if has_new_logo:
        patch["logo_url"] = save_logo(logo, logo_filename)

    result = reconcile(current, caller_role, patch, has_new_logo=has_new_logo)
    snapshot = insert_snapshot(result)

    old_logo = current.logo_url if current else None
    if has_new_logo and old_logo and old_logo != snapshot.logo_url:
        try:
            on_stale_logo(old_logo)
        except Exception as e:
            logger.warning(f"Old logo cleanup failed for {old_logo}: {e}")

    return snapshot
