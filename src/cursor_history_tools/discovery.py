"""Discover Cursor projects and the chats that can be rebuilt for them."""

import logging
import os
import platform
from pathlib import Path
from urllib.parse import unquote

import orjson

from .assembler import content_fingerprint, is_real_chat_record
from .chat_files import looks_like_chat_file
from .errors import StoreUnavailable
from .extractors import extract_bubbles, extract_prompts
from .matcher import DEFAULT_CONFIG, MatchConfig, group_prompts_by_sessions
from .models import Bubble, ChatKind, ChatRef, Project
from .store import BUBBLE_PREFIX, COMPOSER_PANE_PREFIX, DISK_KV_TABLE, PROMPTS_KEY, StateStore
from .threads import segment_threads

logger = logging.getLogger(__name__)

USER_DIR_ENV = "CURSOR_USER_DIR"

CHAT_FILE_DIRS = ("chatSessions", "chatEditingSessions")
# Searched recursively
EXTRA_CHAT_DIRS = ("chat", "chats", "conversations", "cursor-chat")

# Composer pane keys end in a UUID; shorter suffixes are panel ids
MIN_PANE_ID_LENGTH = 31


def get_cursor_user_dirs() -> list[Path]:
    """Get the paths to Cursor ``User`` directories for this platform.

    ``CURSOR_USER_DIR`` replaces the platform default when set.
    """
    override = os.environ.get(USER_DIR_ENV)
    if override:
        return [Path(override).expanduser()]

    system = platform.system()
    if system == "Windows":
        appdata = os.environ.get("APPDATA", "")
        return [Path(appdata) / "Cursor" / "User"] if appdata else []
    if system == "Darwin":  # macOS
        return [Path.home() / "Library" / "Application Support" / "Cursor" / "User"]
    return [Path.home() / ".config" / "Cursor" / "User"]


def global_state_db(user_dir: Path) -> Path:
    return user_dir / "globalStorage" / "state.vscdb"


def _parse_workspace_json(workspace_dir: Path) -> tuple[str | None, str | None]:
    """Parse workspace.json to get the project name and path."""
    workspace_json = workspace_dir / "workspace.json"
    if not workspace_json.exists():
        return None, None
    try:
        data = orjson.loads(workspace_json.read_bytes())
    except (orjson.JSONDecodeError, OSError) as e:
        logger.warning("Could not read %s: %s", workspace_json, e)
        return None, None
    if not isinstance(data, dict):
        return None, None
    folder = data.get("folder") or ""
    if not isinstance(folder, str) or not folder:
        return None, None
    # folder is often a URI like file:///path/to/workspace
    if folder.startswith("file://"):
        folder = folder[7:]
        if platform.system() == "Windows" and folder.startswith("/"):
            folder = folder[1:]
    folder = unquote(folder).rstrip("/\\")
    name = Path(folder).name or folder
    return name or None, folder or None


def _collect_chat_files(workspace_dir: Path) -> list[Path]:
    files: list[Path] = []
    for dirname in CHAT_FILE_DIRS:
        directory = workspace_dir / dirname
        if directory.is_dir():
            files.extend(sorted(directory.glob("*.json")))
    for dirname in EXTRA_CHAT_DIRS:
        directory = workspace_dir / dirname
        if directory.is_dir():
            files.extend(sorted(directory.rglob("*.json")))
    return [path for path in files if looks_like_chat_file(path)]


def _file_fingerprint(path: Path) -> str | None:
    try:
        return content_fingerprint(path.read_bytes())
    except OSError:
        return None


class _BubbleCache:
    """Reads the global bubble rows at most once per discovery run."""

    def __init__(self, global_db: Path | None):
        self.global_db = global_db
        self._sessions: dict[str, list[Bubble]] | None = None

    def sessions(self) -> dict[str, list[Bubble]]:
        if self._sessions is None:
            self._sessions = {}
            if self.global_db is not None and self.global_db.is_file():
                try:
                    rows = StateStore(self.global_db).scan_by_prefix(
                        BUBBLE_PREFIX, table=DISK_KV_TABLE
                    )
                except StoreUnavailable as e:
                    logger.warning("%s", e)
                else:
                    self._sessions = extract_bubbles(rows)
        return self._sessions


def _add_state_chats(
    project: Project,
    workspace_dir: Path,
    state_db: Path,
    bubbles: _BubbleCache,
    seen_fingerprints: set[str],
    config: MatchConfig,
) -> None:
    store = StateStore(state_db)
    global_db = None
    if bubbles.global_db is not None and bubbles.global_db.is_file():
        global_db = str(bubbles.global_db)
    workspace_id = workspace_dir.name
    base = dict(
        project_name=project.name,
        workspace_db=str(state_db),
        global_db=global_db,
    )

    try:
        prompts = extract_prompts(store.get_value(PROMPTS_KEY))
    except StoreUnavailable as e:
        logger.warning("%s", e)
        return

    if prompts:
        project.add_chat(ChatRef(
            kind=ChatKind.COMBINED,
            chat_id=f"{workspace_id}_combined",
            name=f"Chat: {project.name} - All prompts ({len(prompts)} prompts)",
            source_path=str(workspace_dir / f"{project.name}_combined.json"),
            prompt_count=len(prompts),
            **base,
        ))

        sessions = group_prompts_by_sessions(prompts, bubbles.sessions(), config)
        for session in sessions:
            status = "with responses" if session.has_bubble_backed_responses else "no responses"
            project.add_chat(ChatRef(
                kind=ChatKind.SESSION,
                chat_id=f"{workspace_id}_session_{session.session_id}",
                name=(
                    f"Chat: {project.name} - Session {session.session_id[:8]} "
                    f"({len(session.prompts)} prompts, {status})"
                ),
                source_path=str(workspace_dir / f"{project.name}_session_{session.session_id}.json"),
                session_id=session.session_id,
                prompt_count=len(session.prompts),
                **base,
            ))

        if not sessions:
            for thread in segment_threads(prompts):
                project.add_chat(ChatRef(
                    kind=ChatKind.THREAD,
                    chat_id=f"{workspace_id}_thread_{thread.number}",
                    name=f"Chat: {project.name} - Thread {thread.number} ({len(thread.prompts)} prompts)",
                    source_path=str(workspace_dir / f"{project.name}_thread_{thread.number}.json"),
                    thread_number=thread.number,
                    prompt_count=len(thread.prompts),
                    **base,
                ))

    try:
        pane_rows = store.scan_by_prefix(COMPOSER_PANE_PREFIX)
    except StoreUnavailable as e:
        logger.warning("%s", e)
        return

    for key, value in pane_rows:
        uuid = key.rsplit(".", 1)[-1]
        if len(uuid) < MIN_PANE_ID_LENGTH or not is_real_chat_record(value):
            continue
        fingerprint = content_fingerprint(value)
        if fingerprint in seen_fingerprints:
            logger.debug("Skipping pane %s: duplicate content", uuid)
            continue
        seen_fingerprints.add(fingerprint)
        project.add_chat(ChatRef(
            kind=ChatKind.PANE,
            chat_id=f"{workspace_id}_session_{uuid}",
            name=f"Chat: {project.name} - Session {uuid}",
            source_path=str(workspace_dir / f"{project.name}_session_{uuid}.json"),
            session_id=uuid,
            **base,
        ))


def _is_current(project_path: str | None, current_dirs: list[Path]) -> bool:
    if not project_path:
        return False
    try:
        resolved = Path(project_path).resolve()
    except OSError:
        return False
    return any(resolved == Path(d).resolve() for d in current_dirs)


def scan_workspace(
    workspace_dir: Path,
    bubbles: _BubbleCache,
    current_dirs: list[Path] | None = None,
    config: MatchConfig = DEFAULT_CONFIG,
) -> Project:
    """Build a Project with every chat found in one workspace storage folder."""
    name, path = _parse_workspace_json(workspace_dir)
    project = Project(
        name=name or workspace_dir.name,
        path=path,
        is_current=_is_current(path, current_dirs or []),
    )

    seen_fingerprints: set[str] = set()
    for chat_file in _collect_chat_files(workspace_dir):
        fingerprint = _file_fingerprint(chat_file)
        if fingerprint:
            seen_fingerprints.add(fingerprint)
        project.add_chat(ChatRef(
            kind=ChatKind.FILE,
            chat_id=f"chat_{chat_file.stem}",
            name=f"Chat: {chat_file.name}",
            project_name=project.name,
            source_path=str(chat_file),
        ))

    state_db = workspace_dir / "state.vscdb"
    if state_db.is_file():
        _add_state_chats(project, workspace_dir, state_db, bubbles, seen_fingerprints, config)

    return project


def merge_projects(projects: list[Project]) -> list[Project]:
    """Merge projects sharing a name (case-insensitively), current projects first."""
    merged: dict[str, Project] = {}
    for project in projects:
        key = project.name.lower()
        existing = merged.get(key)
        if existing is None:
            merged[key] = project
            continue
        existing.is_current = existing.is_current or project.is_current
        existing.path = existing.path or project.path
        for chat in project.chats:
            existing.add_chat(chat)
    return sorted(merged.values(), key=lambda p: (not p.is_current, p.name.lower()))


def discover_projects(
    user_dir: Path | str | None = None,
    current_dirs: list[Path] | None = None,
    config: MatchConfig = DEFAULT_CONFIG,
) -> list[Project]:
    """Discover every project with at least one chat under a Cursor ``User`` dir.

    Args:
        user_dir: The ``User`` directory; defaults to the platform locations.
        current_dirs: Project folders to list first (e.g. the working directory).
        config: Matching thresholds used to group prompts into sessions.
    """
    user_dirs = [Path(user_dir)] if user_dir else get_cursor_user_dirs()
    projects: list[Project] = []

    for directory in user_dirs:
        storage = directory / "workspaceStorage"
        if not storage.is_dir():
            logger.info("No workspace storage at %s", storage)
            continue
        bubbles = _BubbleCache(global_state_db(directory))
        for workspace_dir in sorted(storage.iterdir()):
            if not workspace_dir.is_dir():
                continue
            project = scan_workspace(workspace_dir, bubbles, current_dirs, config)
            if project.chats:
                projects.append(project)

    merged = merge_projects(projects)
    logger.info(
        "Discovered %d projects with %d chats",
        len(merged), sum(len(p.chats) for p in merged),
    )
    return merged
