"""
FastAPI application for the chat dashboard.

This module provides:
- Auth endpoints: login, logout, current identity
- Settings endpoints: read the current branding, patch it (theme-only for
  regular users, everything for admins) with an optional logo upload
- User endpoints (admin): list, create, delete, reset password
- Chat endpoints: raw session feed and grouped conversation list
- Analytics endpoint (admin): timeline buckets and distributions

Architecture:
- Settings and users live in PostgreSQL; settings are append-only snapshots
- Chat sessions are fetched per request from the configured webhook and
  never stored; a sample dataset stands in when the source is unavailable
- Identity is a signed cookie, trusted until it expires

Run with `python -m src.main` (or the `chatdash` console script).
"""

import json
import logging
from contextlib import asynccontextmanager
from datetime import date
from typing import Literal, Optional
from zoneinfo import ZoneInfo

import uvicorn
from fastapi import (
    BackgroundTasks,
    Depends,
    FastAPI,
    File,
    Form,
    HTTPException,
    Query,
    Response,
    UploadFile,
)
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse
from pydantic import BaseModel, Field

from src.analytics import TimeRange, InvalidRangeError, build_report, default_window
from src.auth import (
    SESSION_COOKIE,
    SESSION_MAX_AGE,
    SessionUser,
    admin_required,
    authenticate,
    create_session,
    get_current_user,
)
from src.chat_sessions import fetch_chat_sessions, list_conversations
from src.config import get_config
from src.settings import (
    ConfigurationMissingError,
    ForbiddenUpdateError,
    InvalidSettingsError,
    Settings,
    ensure_settings,
    get_settings,
    update_settings,
)
from src.uploads import InvalidUploadError, UploadTooLargeError, remove_logo, resolve_upload, validate_logo
from src.users import (
    DuplicateUsernameError,
    InvalidRoleError,
    SelfActionError,
    UserNotFoundError,
    create_user,
    delete_user,
    ensure_default_admin,
    list_users,
    reset_password,
)
from db.db import get_conn, put_conn, close_pool

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# LIFESPAN
# ═══════════════════════════════════════════════════════════════════════════

def bootstrap() -> None:
    """Seed the default admin and baseline settings if they are missing."""
    cfg = get_config()
    ensure_default_admin(
        cfg.bootstrap.admin_username,
        cfg.bootstrap.admin_password,
        cfg.bootstrap.admin_name,
    )
    ensure_settings(Settings(
        company_name=cfg.branding.company_name,
        ai_name=cfg.branding.ai_name,
        user_name=cfg.branding.user_name,
        webhook_url=cfg.branding.default_webhook_url,
        theme=cfg.branding.theme,
    ))


@asynccontextmanager
async def lifespan(app: FastAPI):
    bootstrap()
    yield
    close_pool()


# FastAPI app
app = FastAPI(
    title="Chat Dashboard API",
    description="Chat log viewer, user management and branding settings",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


# ═══════════════════════════════════════════════════════════════════════════
# MODELS
# ═══════════════════════════════════════════════════════════════════════════

class LoginRequest(BaseModel):
    """Login request."""
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class UserCreate(BaseModel):
    """Create user request."""
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    role: str = Field(..., min_length=1)


class PasswordReset(BaseModel):
    """Reset password request."""
    password: str = Field(..., min_length=1)


def _internal_error(action: str, e: Exception) -> HTTPException:
    logger.exception(f"{action} failed: {e}")
    return HTTPException(status_code=500, detail="Internal server error")


def _tz() -> ZoneInfo:
    return ZoneInfo(get_config().analytics.timezone)


async def _load_sessions():
    current = get_settings()
    return await fetch_chat_sessions(current.webhook_url if current else None)


# ═══════════════════════════════════════════════════════════════════════════
# SYSTEM ENDPOINTS
# ═══════════════════════════════════════════════════════════════════════════

@app.get("/health")
async def health():
    """Health check endpoint; verifies the database answers."""
    try:
        conn = get_conn()
        try:
            with conn.cursor() as cur:
                cur.execute("SELECT 1")
                cur.fetchone()
        finally:
            put_conn(conn)
    except Exception as e:
        logger.error(f"Health check failed: {e}")
        return JSONResponse(
            status_code=500,
            content={"status": "unhealthy", "error": "Database connection failed"},
        )
    return {"status": "healthy"}


@app.get("/uploads/{filename}", include_in_schema=False)
async def serve_upload(filename: str):
    """Serve a stored logo."""
    path = resolve_upload(filename)
    if path is None or not path.is_file():
        raise HTTPException(status_code=404, detail="File not found")
    return FileResponse(path)


# ═══════════════════════════════════════════════════════════════════════════
# AUTH ENDPOINTS
# ═══════════════════════════════════════════════════════════════════════════

@app.post("/api/auth/login")
async def login(request: LoginRequest, response: Response):
    """Verify credentials and issue the session cookie."""
    try:
        user = authenticate(request.username, request.password)
    except Exception as e:
        raise _internal_error("Login", e)

    if not user:
        raise HTTPException(status_code=401, detail="Invalid credentials")

    response.set_cookie(
        SESSION_COOKIE,
        create_session(user),
        max_age=SESSION_MAX_AGE,
        httponly=True,
        samesite="lax",
    )
    logger.info(f"User '{user.username}' logged in")
    return user.to_dict()


@app.post("/api/auth/logout")
async def logout(response: Response):
    """Clear the session cookie."""
    response.delete_cookie(SESSION_COOKIE)
    return {"success": True}


@app.get("/api/auth/me")
async def me(user: SessionUser = Depends(get_current_user)):
    """Return the caller's identity."""
    return user.to_dict()


# ═══════════════════════════════════════════════════════════════════════════
# SETTINGS ENDPOINTS
# ═══════════════════════════════════════════════════════════════════════════

@app.get("/api/settings")
async def read_settings():
    """Current settings snapshot, or null before seeding."""
    try:
        current = get_settings()
    except Exception as e:
        raise _internal_error("Get settings", e)
    return current.model_dump(mode="json") if current else None


@app.post("/api/settings")
async def write_settings(
    background_tasks: BackgroundTasks,
    settings: str = Form(...),
    logo: Optional[UploadFile] = File(None),
    user: SessionUser = Depends(get_current_user),
):
    """
    Patch settings.

    Multipart body: `settings` is a JSON object of the fields to change,
    `logo` an optional image. Regular users may only send {"theme": ...}.
    """
    try:
        patch = json.loads(settings)
    except json.JSONDecodeError:
        raise HTTPException(status_code=400, detail="settings must be valid JSON")
    if not isinstance(patch, dict):
        raise HTTPException(status_code=400, detail="settings must be a JSON object")

    logo_bytes = None
    logo_filename = None
    if logo is not None:
        logo_bytes = await logo.read()
        logo_filename = logo.filename
        try:
            validate_logo(logo.content_type, len(logo_bytes))
        except InvalidUploadError as e:
            logger.warning(f"Rejected logo upload from '{user.username}': {e}")
            raise HTTPException(status_code=400, detail=str(e))
        except UploadTooLargeError as e:
            logger.warning(f"Rejected logo upload from '{user.username}': {e}")
            raise HTTPException(status_code=413, detail=str(e))

    try:
        snapshot = update_settings(
            user.role,
            patch,
            logo=logo_bytes,
            logo_filename=logo_filename,
            on_stale_logo=lambda old: background_tasks.add_task(remove_logo, old),
        )
    except ForbiddenUpdateError as e:
        raise HTTPException(status_code=403, detail=str(e))
    except ConfigurationMissingError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except InvalidSettingsError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        raise _internal_error("Update settings", e)

    return snapshot.model_dump(mode="json")


# ═══════════════════════════════════════════════════════════════════════════
# USER ENDPOINTS (ADMIN)
# ═══════════════════════════════════════════════════════════════════════════

@app.get("/api/users")
async def get_users(admin: SessionUser = Depends(admin_required)):
    """List all users, newest first."""
    try:
        return [u.model_dump(mode="json") for u in list_users()]
    except Exception as e:
        raise _internal_error("List users", e)


@app.post("/api/users")
async def add_user(request: UserCreate, admin: SessionUser = Depends(admin_required)):
    """Create a user."""
    try:
        user = create_user(request.username, request.password, request.name, request.role)
    except InvalidRoleError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except DuplicateUsernameError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except Exception as e:
        raise _internal_error("Create user", e)
    return user.model_dump(mode="json")


@app.delete("/api/users/{user_id}")
async def remove_user(user_id: int, admin: SessionUser = Depends(admin_required)):
    """Delete a user other than the caller."""
    try:
        delete_user(user_id, caller_id=admin.id)
    except SelfActionError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except UserNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except Exception as e:
        raise _internal_error("Delete user", e)
    return {"success": True}


@app.post("/api/users/{user_id}/reset-password")
async def reset_user_password(
    user_id: int,
    request: PasswordReset,
    admin: SessionUser = Depends(admin_required),
):
    """Set a new password for a user other than the caller."""
    try:
        reset_password(user_id, request.password, caller_id=admin.id)
    except SelfActionError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except UserNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except Exception as e:
        raise _internal_error("Reset password", e)
    return {"success": True}


# ═══════════════════════════════════════════════════════════════════════════
# CHAT ENDPOINTS
# ═══════════════════════════════════════════════════════════════════════════

@app.get("/api/chat-sessions")
async def get_chat_sessions(user: SessionUser = Depends(get_current_user)):
    """Raw session records from the chat source (or the sample dataset)."""
    try:
        sessions = await _load_sessions()
    except Exception as e:
        raise _internal_error("Fetch chat sessions", e)
    return [s.model_dump(mode="json") for s in sessions]


@app.get("/api/sessions")
async def get_conversations(
    start: Optional[date] = Query(None),
    end: Optional[date] = Query(None),
    order: Literal["asc", "desc"] = Query("desc"),
    user: SessionUser = Depends(get_current_user),
):
    """Conversations grouped by session id for the session list."""
    try:
        sessions = await _load_sessions()
    except Exception as e:
        raise _internal_error("Fetch chat sessions", e)

    conversations = list_conversations(sessions, start=start, end=end, order=order)
    return {
        "count": len(conversations),
        "sessions": [
            {
                "session_id": session_id,
                "messages": [m.model_dump(mode="json") for m in messages],
            }
            for session_id, messages in conversations.items()
        ],
    }


# ═══════════════════════════════════════════════════════════════════════════
# ANALYTICS ENDPOINT (ADMIN)
# ═══════════════════════════════════════════════════════════════════════════

@app.get("/api/analytics")
async def get_analytics(
    time_range: TimeRange = Query(TimeRange.MONTH, alias="range"),
    start: Optional[date] = Query(None),
    end: Optional[date] = Query(None),
    admin: SessionUser = Depends(admin_required),
):
    """Chart series for the analytics view."""
    tz = _tz()
    if start is None or end is None:
        default_start, default_end = default_window(time_range, tz)
        start = start or default_start
        end = end or default_end

    try:
        sessions = await _load_sessions()
    except Exception as e:
        raise _internal_error("Fetch chat sessions", e)

    try:
        report = build_report(sessions, time_range, start, end, tz)
    except InvalidRangeError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return {
        "range": report.range.value,
        "start": report.start.isoformat(),
        "end": report.end.isoformat(),
        "total": report.total,
        "timeline": [{"label": b.label, "count": b.count} for b in report.timeline],
        "by_type": report.by_type,
        "by_hour": [{"label": b.label, "count": b.count} for b in report.by_hour],
        "by_weekday": [{"label": b.label, "count": b.count} for b in report.by_weekday],
    }


def run():
    """Serve the dashboard API with uvicorn."""
    logging.basicConfig(level=logging.INFO)
    uvicorn.run("src.main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    run()
