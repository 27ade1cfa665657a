"""
Chat session source and grouping.

Sessions are never stored locally. They are fetched per request from the
webhook URL held in settings; when no URL is configured or the fetch
fails, a built-in sample dataset is served instead so the viewer never
sees an upstream error.

Example:
    >>> records = await fetch_chat_sessions(settings.webhook_url)
    >>> conversations = group_sessions(records)
    >>> conversations["sample-session-1"][0].message.type
    'human'
"""

import logging
from datetime import date, datetime, timedelta, timezone
from typing import Any, Literal, Optional

import httpx
from pydantic import BaseModel, Field, ValidationError, field_validator

from src.config import get_config

logger = logging.getLogger(__name__)


# ============================================================================
# Exceptions
# ============================================================================

class UpstreamUnavailableError(Exception):
    """Raised when the chat-session source cannot be read."""
    pass


# ============================================================================
# Models
# ============================================================================

class ChatMessage(BaseModel):
    """A single message as delivered by the chat-session source."""
    type: Literal["human", "ai"]
    content: str
    additional_kwargs: dict[str, Any] = Field(default_factory=dict)
    response_metadata: dict[str, Any] = Field(default_factory=dict)


class ChatSession(BaseModel):
    """A message paired with its conversation id and timestamp."""
    session_id: str
    message: ChatMessage
    created_at: datetime

    @field_validator("created_at")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        # Naive timestamps from the source are taken as UTC.
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


# ============================================================================
# Sample data
# ============================================================================

_SAMPLE_CONVERSATIONS = [
    ("sample-session-1", [
        ("human", "Hello, how can I help you today?", 3600),
        ("ai", "Hi! I'm looking for information about your services.", 3500),
    ]),
    ("sample-session-2", [
        ("human", "What are your business hours?", 7200),
        ("ai", "We're open Monday to Friday, 9 AM to 5 PM.", 7100),
    ]),
]


def sample_sessions(now: Optional[datetime] = None) -> list[ChatSession]:
    """Built-in dataset served when the real source is unavailable."""
    now = now or datetime.now(timezone.utc)
    return [
        ChatSession(
            session_id=session_id,
            message=ChatMessage(type=kind, content=content),
            created_at=now - timedelta(seconds=age),
        )
        for session_id, messages in _SAMPLE_CONVERSATIONS
        for kind, content, age in messages
    ]


# ============================================================================
# Fetching
# ============================================================================

def _parse_sessions(data: Any) -> list[ChatSession]:
    if not isinstance(data, list):
        raise UpstreamUnavailableError(f"Expected a list of sessions, got {type(data).__name__}")

    sessions = []
    for index, item in enumerate(data):
        try:
            sessions.append(ChatSession.model_validate(item))
        except ValidationError as e:
            logger.warning(f"Skipping malformed session record #{index}: {e}")
    return sessions


async def fetch_from_source(url: str, timeout_seconds: Optional[float] = None) -> list[ChatSession]:
    """
    Fetch session records from the webhook.

    Raises:
        UpstreamUnavailableError: On connection, HTTP or parsing failure
    """
    if timeout_seconds is None:
        timeout_seconds = get_config().chat_source.timeout_seconds

    try:
        async with httpx.AsyncClient(timeout=timeout_seconds) as client:
            response = await client.get(url)
            response.raise_for_status()
            data = response.json()
    except httpx.HTTPStatusError as e:
        raise UpstreamUnavailableError(f"Chat source returned {e.response.status_code}")
    except httpx.HTTPError as e:
        raise UpstreamUnavailableError(f"Cannot reach chat source: {e}")
    except ValueError as e:
        raise UpstreamUnavailableError(f"Chat source returned invalid JSON: {e}")

    return _parse_sessions(data)


async def fetch_chat_sessions(url: Optional[str], timeout_seconds: Optional[float] = None) -> list[ChatSession]:
    """
    Fetch session records, falling back to the sample dataset.

    Never raises for upstream problems.
    """
    if not url:
        logger.info("No webhook URL configured, serving sample sessions")
        return sample_sessions()

    try:
        return await fetch_from_source(url, timeout_seconds)
    except UpstreamUnavailableError as e:
        logger.warning(f"Chat source unavailable, serving sample sessions: {e}")
        return sample_sessions()


# ============================================================================
# Grouping
# ============================================================================

def group_sessions(sessions: list[ChatSession]) -> dict[str, list[ChatSession]]:
    """
    Group records by conversation id, each group ordered by ascending timestamp.

    Groups appear in order of first occurrence in the input.
    """
    grouped: dict[str, list[ChatSession]] = {}
    for session in sessions:
        grouped.setdefault(session.session_id, []).append(session)

    for messages in grouped.values():
        messages.sort(key=lambda s: s.created_at)

    return grouped


def _as_bound(value: date | datetime | None) -> Optional[datetime]:
    if value is None:
        return None
    if not isinstance(value, datetime):
        value = datetime(value.year, value.month, value.day)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def list_conversations(
    sessions: list[ChatSession],
    start: date | datetime | None = None,
    end: date | datetime | None = None,
    order: Literal["asc", "desc"] = "desc",
) -> dict[str, list[ChatSession]]:
    """
    Grouped conversations for the session list view.

    A conversation is kept when its first message falls strictly after
    `start` and strictly before `end` (either bound optional). Conversations
    are ordered by their first message's timestamp.
    """
    start_dt, end_dt = _as_bound(start), _as_bound(end)

    conversations = list(group_sessions(sessions).items())
    if start_dt or end_dt:
        conversations = [
            (session_id, messages) for session_id, messages in conversations
            if (not start_dt or messages[0].created_at > start_dt)
            and (not end_dt or messages[0].created_at < end_dt)
        ]

    conversations.sort(key=lambda item: item[1][0].created_at, reverse=(order == "desc"))
    return dict(conversations)
