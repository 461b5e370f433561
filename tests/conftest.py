"""Pytest configuration and shared fixtures."""

import sqlite3
from pathlib import Path

import orjson
import pytest

from cursor_history_tools.store import (
    BUBBLE_PREFIX,
    COMPOSER_PANE_PREFIX,
    GENERATIONS_KEY,
    PROMPTS_KEY,
)

# 2024-01-01 00:00:00 UTC
BASE_MS = 1704067200000

PANE_UUID = "0f8e4c2a-5b1d-4e6f-9a3c-7d2b1e8f4a60"


def write_state_db(path: Path, items: dict | None = None, disk_kv: dict | None = None) -> Path:
    """Create a state.vscdb-shaped SQLite file.

    Values that are not str or bytes are serialized with orjson.
    ``disk_kv`` values are stored as BLOBs, the way Cursor stores them.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(path)
    try:
        conn.execute("CREATE TABLE ItemTable (key TEXT UNIQUE ON CONFLICT REPLACE, value BLOB)")
        conn.execute("CREATE TABLE cursorDiskKV (key TEXT UNIQUE ON CONFLICT REPLACE, value BLOB)")
        for key, value in (items or {}).items():
            if not isinstance(value, (str, bytes)) and value is not None:
                value = orjson.dumps(value).decode()
            conn.execute("INSERT INTO ItemTable (key, value) VALUES (?, ?)", (key, value))
        for key, value in (disk_kv or {}).items():
            if not isinstance(value, (str, bytes)) and value is not None:
                value = orjson.dumps(value)
            elif isinstance(value, str):
                value = value.encode()
            conn.execute("INSERT INTO cursorDiskKV (key, value) VALUES (?, ?)", (key, value))
        conn.commit()
    finally:
        conn.close()
    return path


def bubble_rows(session_id: str, bubbles: list[dict]) -> dict:
    """Build cursorDiskKV entries for one bubble session, keyed in list order."""
    return {
        f"{BUBBLE_PREFIX}{session_id}:b{i:03d}": bubble
        for i, bubble in enumerate(bubbles)
    }


@pytest.fixture
def sample_prompts():
    """Raw aiService.prompts entries."""
    return [
        {"text": "How do I center a div?", "commandType": 4, "unixMs": BASE_MS},
        {"text": "Explain the box model in CSS", "commandType": 4, "unixMs": BASE_MS + 60_000},
    ]


@pytest.fixture
def sample_bubbles():
    """A bubble session answering both sample prompts."""
    return bubble_rows("session-aaaa-1111", [
        {"type": 1, "text": "How do I center a div?", "createdAt": "2024-01-01T00:00:00Z"},
        {"type": 2, "text": "Use flexbox with justify-content: center.", "createdAt": "2024-01-01T00:00:05Z"},
        {"type": 1, "text": "Explain the box model in CSS", "createdAt": "2024-01-01T00:01:00Z"},
        {"type": 2, "text": "Every element is a box with content, padding, border and margin.", "createdAt": "2024-01-01T00:01:05Z"},
    ])


@pytest.fixture
def workspace_db(tmp_path, sample_prompts):
    """A workspace state store holding prompts and echo-only generations."""
    generations = [
        {"textDescription": p["text"], "unixMs": p["unixMs"] + 1000} for p in sample_prompts
    ]
    return write_state_db(
        tmp_path / "ws" / "state.vscdb",
        items={PROMPTS_KEY: sample_prompts, GENERATIONS_KEY: generations},
    )


@pytest.fixture
def global_db(tmp_path, sample_bubbles):
    """A global state store holding the sample bubble session."""
    return write_state_db(tmp_path / "global" / "state.vscdb", disk_kv=sample_bubbles)


@pytest.fixture
def cursor_user_dir(tmp_path, sample_prompts, sample_bubbles):
    """A Cursor ``User`` directory with two workspaces and a global store.

    - ``ws-web``: project ``web-app`` with prompts, a pane record and a chat file
    - ``ws-api``: project ``api server`` with prompts no bubble answers
    """
    user_dir = tmp_path / "User"
    write_state_db(user_dir / "globalStorage" / "state.vscdb", disk_kv=sample_bubbles)

    web = user_dir / "workspaceStorage" / "ws-web"
    web.mkdir(parents=True)
    (web / "workspace.json").write_bytes(orjson.dumps({"folder": "file:///home/dev/web-app"}))
    write_state_db(web / "state.vscdb", items={
        PROMPTS_KEY: sample_prompts,
        f"{COMPOSER_PANE_PREFIX}{PANE_UUID}": {
            "messages": [
                {"role": "user", "content": "Rename the header component"},
                {"role": "assistant", "content": "Renamed Header to SiteHeader in three files."},
            ],
        },
        f"{COMPOSER_PANE_PREFIX}short-id": {"messages": []},
    })
    sessions = web / "chatSessions"
    sessions.mkdir()
    (sessions / "1c2d3e4f-aaaa-bbbb-cccc-1234567890ab.json").write_bytes(orjson.dumps({
        "requests": [
            {
                "message": {"text": "Write a unit test for the parser"},
                "response": [{"value": "Here is a pytest test for the parser."}],
                "timestamp": BASE_MS,
            },
        ],
    }))

    api = user_dir / "workspaceStorage" / "ws-api"
    api.mkdir(parents=True)
    (api / "workspace.json").write_bytes(
        orjson.dumps({"folder": "file:///home/dev/api%20server"})
    )
    write_state_db(api / "state.vscdb", items={
        PROMPTS_KEY: [
            {"text": "create a login page"},
            {"text": "add validation"},
            {"text": "fix the bug"},
        ],
    })

    # Not a workspace folder with chats
    (user_dir / "workspaceStorage" / "empty-ws").mkdir()
    return user_dir


@pytest.fixture
def make_state_db():
    """Return the state store builder for tests that need custom contents."""
    return write_state_db
