"""
Tests for the chat-session source and grouping.

Tests cover:
- Grouping by session id and message ordering
- Conversation list filtering and sorting
- Fetching from the webhook (mocked httpx)
- Fallback to the sample dataset
"""

from datetime import date, datetime, timedelta, timezone
from unittest.mock import AsyncMock, Mock, patch

import httpx
import pytest
from pydantic import ValidationError

from src.chat_sessions import (
    ChatSession,
    UpstreamUnavailableError,
    fetch_chat_sessions,
    fetch_from_source,
    group_sessions,
    list_conversations,
    sample_sessions,
)

WEBHOOK = "https://hooks.example.com/sessions"


def _record(session_id, kind, content, created_at):
    return {
        "session_id": session_id,
        "message": {"type": kind, "content": content},
        "created_at": created_at,
    }


def _session(session_id, kind, content, created_at):
    return ChatSession.model_validate(_record(session_id, kind, content, created_at))


@pytest.fixture
def mixed_records():
    return [
        _session("a", "human", "hi", "2024-01-01T10:00:00Z"),
        _session("b", "human", "yo", "2024-01-01T09:00:00Z"),
        _session("a", "ai", "hello", "2024-01-01T09:59:00Z"),
    ]


def _mock_client(get):
    """Patch httpx.AsyncClient so its context manager yields a client with `get`."""
    patcher = patch("httpx.AsyncClient")
    mock_client_class = patcher.start()
    mock_client = AsyncMock()
    mock_client.get = get
    mock_client_class.return_value.__aenter__.return_value = mock_client
    return patcher, mock_client


def _json_response(payload):
    response = Mock()
    response.json.return_value = payload
    response.raise_for_status = Mock()
    return response


# ============================================================================
# Models
# ============================================================================

def test_naive_timestamp_taken_as_utc():
    session = _session("x", "human", "hi", "2024-03-01T12:00:00")

    assert session.created_at.tzinfo is not None
    assert session.created_at.utcoffset() == timedelta(0)


def test_unknown_message_type_rejected():
    with pytest.raises(ValidationError):
        _session("x", "system", "hi", "2024-03-01T12:00:00Z")


# ============================================================================
# Grouping
# ============================================================================

def test_group_sessions_orders_messages(mixed_records):
    grouped = group_sessions(mixed_records)

    assert list(grouped) == ["a", "b"]
    assert [m.message.content for m in grouped["a"]] == ["hello", "hi"]
    assert [m.message.content for m in grouped["b"]] == ["yo"]


def test_group_sessions_preserves_every_record(mixed_records):
    grouped = group_sessions(mixed_records)

    assert sum(len(messages) for messages in grouped.values()) == len(mixed_records)


def test_group_sessions_empty():
    assert group_sessions([]) == {}


def test_list_conversations_sorted_by_first_message(mixed_records):
    newest_first = list_conversations(mixed_records)
    oldest_first = list_conversations(mixed_records, order="asc")

    # a starts at 09:59, b at 09:00
    assert list(newest_first) == ["a", "b"]
    assert list(oldest_first) == ["b", "a"]


def test_list_conversations_filters_on_first_message():
    records = [
        _session("early", "human", "1", "2024-01-01T08:00:00Z"),
        _session("early", "ai", "2", "2024-01-05T08:00:00Z"),
        _session("mid", "human", "3", "2024-01-03T08:00:00Z"),
        _session("late", "human", "4", "2024-01-09T08:00:00Z"),
    ]

    result = list_conversations(records, start=date(2024, 1, 2), end=date(2024, 1, 8))

    assert list(result) == ["mid"]


def test_list_conversations_bounds_are_exclusive():
    records = [_session("edge", "human", "x", "2024-01-02T00:00:00Z")]

    assert list_conversations(records, start=datetime(2024, 1, 2, tzinfo=timezone.utc)) == {}
    assert list_conversations(records, end=datetime(2024, 1, 2, tzinfo=timezone.utc)) == {}
    assert list(list_conversations(records, start=date(2024, 1, 1))) == ["edge"]


# ============================================================================
# Sample data
# ============================================================================

def test_sample_sessions_shape():
    now = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)
    samples = sample_sessions(now)

    grouped = group_sessions(samples)
    assert list(grouped) == ["sample-session-1", "sample-session-2"]
    assert [m.message.type for m in grouped["sample-session-1"]] == ["human", "ai"]
    assert all(s.created_at < now for s in samples)


# ============================================================================
# Fetching
# ============================================================================

@pytest.mark.asyncio
async def test_fetch_from_source_success():
    payload = [_record("s1", "human", "hello", "2024-01-01T10:00:00Z")]
    patcher, mock_client = _mock_client(AsyncMock(return_value=_json_response(payload)))
    try:
        sessions = await fetch_from_source(WEBHOOK, timeout_seconds=1.0)
    finally:
        patcher.stop()

    assert len(sessions) == 1
    assert sessions[0].session_id == "s1"
    mock_client.get.assert_called_once_with(WEBHOOK)


@pytest.mark.asyncio
async def test_fetch_from_source_connection_error():
    patcher, _ = _mock_client(AsyncMock(side_effect=httpx.ConnectError("Connection refused")))
    try:
        with pytest.raises(UpstreamUnavailableError):
            await fetch_from_source(WEBHOOK, timeout_seconds=1.0)
    finally:
        patcher.stop()


@pytest.mark.asyncio
async def test_fetch_from_source_http_error():
    response = Mock()
    response.raise_for_status = Mock(side_effect=httpx.HTTPStatusError(
        "Server error", request=Mock(), response=Mock(status_code=502)
    ))
    patcher, _ = _mock_client(AsyncMock(return_value=response))
    try:
        with pytest.raises(UpstreamUnavailableError, match="502"):
            await fetch_from_source(WEBHOOK, timeout_seconds=1.0)
    finally:
        patcher.stop()


@pytest.mark.asyncio
@pytest.mark.parametrize("payload", [{"sessions": []}, "not a list", None])
async def test_fetch_from_source_payload_not_a_list(payload):
    patcher, _ = _mock_client(AsyncMock(return_value=_json_response(payload)))
    try:
        with pytest.raises(UpstreamUnavailableError):
            await fetch_from_source(WEBHOOK, timeout_seconds=1.0)
    finally:
        patcher.stop()


@pytest.mark.asyncio
async def test_malformed_records_are_skipped(caplog):
    payload = [
        _record("real-1", "human", "hello", "2024-01-01T10:00:00Z"),
        _record("real-1", "system", "internal note", "2024-01-01T10:00:30Z"),
        {"session_id": "no-message"},
        _record("real-1", "ai", "hi there", "2024-01-01T10:01:00Z"),
    ]
    patcher, _ = _mock_client(AsyncMock(return_value=_json_response(payload)))
    try:
        with caplog.at_level("WARNING", logger="src.chat_sessions"):
            sessions = await fetch_chat_sessions(WEBHOOK, timeout_seconds=1.0)
    finally:
        patcher.stop()

    assert [s.message.content for s in sessions] == ["hello", "hi there"]
    assert {s.session_id for s in sessions} == {"real-1"}
    assert "#1" in caplog.text and "#2" in caplog.text
    assert "sample" not in caplog.text


@pytest.mark.asyncio
async def test_fetch_chat_sessions_falls_back_on_failure():
    patcher, _ = _mock_client(AsyncMock(side_effect=httpx.TimeoutException("Timeout")))
    try:
        sessions = await fetch_chat_sessions(WEBHOOK, timeout_seconds=1.0)
    finally:
        patcher.stop()

    assert {s.session_id for s in sessions} == {"sample-session-1", "sample-session-2"}


@pytest.mark.asyncio
@pytest.mark.parametrize("url", [None, ""])
async def test_fetch_chat_sessions_without_url(url):
    with patch("httpx.AsyncClient") as mock_client_class:
        sessions = await fetch_chat_sessions(url)

    mock_client_class.assert_not_called()
    assert len(sessions) == 4
