"""Discover Cursor configuration files and the documentation Cursor has indexed.

Configuration lives in three places: the ``User`` directory (settings,
keybindings, storage folders), its parent application directory (the app
state store and language packs) and the per-user ``~/.cursor`` folder
(extensions, docs and global rules). Every known item is reported with an
availability flag so callers can show what is missing as well as what exists.
"""

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from urllib.parse import urlparse

import orjson

from .discovery import get_cursor_user_dirs, global_state_db
from .errors import StoreUnavailable
from .models import SelectionNode
from .store import BUBBLE_PREFIX, DISK_KV_TABLE, StateStore

logger = logging.getLogger(__name__)

# Keys in cursorDiskKV whose values can mention documentation URLs
DOC_KEY_PREFIXES = ("composerData:", BUBBLE_PREFIX, "messageRequestContext:")
DOC_URL_MARKERS = ("developers.", "docs.", "graph-api")

_URL_PATTERN = re.compile(r"https?://[^\s<>\"{}|\\^`\[\]]+")


class SettingKind(str, Enum):
    GLOBAL_SETTINGS = "global_settings"
    KEYBINDINGS = "keybindings"
    STATE_DATABASE = "state_database"
    LANGUAGE_PACKS = "language_packs"
    GLOBAL_STORAGE = "global_storage"
    WORKSPACE_STORAGE = "workspace_storage"
    EXTENSIONS_LIST = "extensions_list"
    RULES = "rules"
    DOCUMENTATION = "documentation"


@dataclass
class SettingItem:
    """One configuration file, folder or documentation entry."""

    id: str
    name: str
    description: str
    category: str
    path: Path | None
    kind: SettingKind
    is_available: bool
    url: str | None = None
    selection: SelectionNode | None = None

    def __post_init__(self):
        if self.selection is None:
            self.selection = SelectionNode(label=self.name, is_available=self.is_available)


@dataclass
class DocumentationGroup:
    """Documentation URLs that share a site, e.g. "Flutter"."""

    name: str
    items: list[SettingItem] = field(default_factory=list)
    selection: SelectionNode | None = None

    def __post_init__(self):
        if self.selection is None:
            self.selection = SelectionNode(label=self.name)
        for item in self.items:
            self.selection.children.append(item.selection)


def default_cursor_home() -> Path:
    return Path.home() / ".cursor"


def _file_item(item_id, name, description, category, path: Path, kind) -> SettingItem:
    return SettingItem(
        id=item_id, name=name, description=description, category=category,
        path=path, kind=kind, is_available=path.is_file(),
    )


def _folder_item(item_id, name, description, category, path: Path, kind) -> SettingItem:
    return SettingItem(
        id=item_id, name=name, description=description, category=category,
        path=path, kind=kind, is_available=path.is_dir(),
    )


def discover_settings(
    user_dir: Path | str | None = None,
    cursor_home: Path | str | None = None,
) -> list[SettingItem]:
    """List the known configuration items of a Cursor installation.

    Files and folders that always exist in a working install are reported
    even when missing, marked unavailable. Optional ones (workspace storage,
    extensions, docs, rules) are only listed when present.

    Args:
        user_dir: The Cursor ``User`` directory; defaults to the platform location.
        cursor_home: The per-user ``.cursor`` folder; defaults to ``~/.cursor``.
    """
    if user_dir is None:
        candidates = get_cursor_user_dirs()
        if not candidates:
            return []
        user_dir = candidates[0]
    user_dir = Path(user_dir)
    app_dir = user_dir.parent
    cursor_home = Path(cursor_home) if cursor_home else default_cursor_home()

    items = [
        _file_item("settings.json", "Global Settings", "Cursor/VS Code user settings",
                   "Configuration", user_dir / "settings.json", SettingKind.GLOBAL_SETTINGS),
        _file_item("keybindings.json", "Keybindings", "Keyboard shortcuts configuration",
                   "Configuration", user_dir / "keybindings.json", SettingKind.KEYBINDINGS),
        _file_item("state.vscdb", "State Database", "Cursor application state database",
                   "Data", app_dir / "state.vscdb", SettingKind.STATE_DATABASE),
        _file_item("state.vscdb.backup", "State Database Backup", "Backup of state database",
                   "Data", app_dir / "state.vscdb.backup", SettingKind.STATE_DATABASE),
        _file_item("languagepacks.json", "Language Packs", "Installed language pack configuration",
                   "Configuration", app_dir / "languagepacks.json", SettingKind.LANGUAGE_PACKS),
        _folder_item("globalStorage", "Global Storage", "Extensions global storage data",
                     "Data", user_dir / "globalStorage", SettingKind.GLOBAL_STORAGE),
    ]

    workspace_storage = user_dir / "workspaceStorage"
    if workspace_storage.is_dir():
        items.append(_folder_item(
            "workspaceStorage", "Workspace Storage", "Project-specific workspace storage",
            "Data", workspace_storage, SettingKind.WORKSPACE_STORAGE,
        ))

    extensions = cursor_home / "extensions"
    if extensions.is_dir():
        items.append(_folder_item(
            "extensions_list", "Extensions List", "List of installed extensions",
            "Configuration", extensions, SettingKind.EXTENSIONS_LIST,
        ))

    docs = cursor_home / "docs"
    if docs.is_dir():
        items.append(_folder_item(
            "global_docs", "Global Docs", f"Global Cursor docs ({docs})",
            "Documentation", docs, SettingKind.DOCUMENTATION,
        ))

    rules = cursor_home / "rules"
    if rules.is_dir():
        for rules_file in sorted(p for p in rules.rglob("*") if p.is_file()):
            relative = rules_file.relative_to(cursor_home).as_posix()
            items.append(SettingItem(
                id=f"global_rules:{relative}",
                name=f"Global Rules: {rules_file.name}",
                description=f"Global Cursor rules file ({relative})",
                category="Configuration",
                path=rules_file,
                kind=SettingKind.RULES,
                is_available=True,
            ))

    logger.info(
        "Found %d setting items (%d available)",
        len(items), sum(1 for item in items if item.is_available),
    )
    return items


def list_extensions(extensions_dir: Path) -> list[str]:
    """Return installed extension folder names, sorted."""
    if not extensions_dir.is_dir():
        return []
    return sorted(
        entry.name for entry in extensions_dir.iterdir()
        if entry.is_dir() and not entry.name.startswith(".")
    )


def preview_setting(item: SettingItem, max_chars: int = 2000) -> str:
    """Return a text preview of a setting: file contents or a folder listing."""
    if not item.is_available or item.path is None:
        return f"{item.name} is not available."
    if item.kind is SettingKind.EXTENSIONS_LIST:
        return "\n".join(list_extensions(item.path)) or "No extensions installed."
    if item.path.is_dir():
        entries = sorted(entry.name for entry in item.path.iterdir())
        return "\n".join(entries) or "(empty folder)"
    if item.kind is SettingKind.STATE_DATABASE:
        return f"SQLite database, {item.path.stat().st_size} bytes."
    text = item.path.read_text(encoding="utf-8", errors="replace")
    if max_chars and len(text) > max_chars:
        text = text[:max_chars] + "..."
    return text


def is_valid_documentation_url(url: str) -> bool:
    """Reject truncated or host-less URLs picked up from free text."""
    if not url or len(url) < 10 or url.endswith(("'", '"', "://")):
        return False
    if not url.lower().startswith(("http://", "https://")):
        return False
    host_part = url.split("://", 1)[1]
    return "." in host_part and not host_part.startswith(".") and not host_part.endswith(".")


def _urls_in_text(text: str) -> list[str]:
    if "http" not in text or not any(marker in text for marker in ("developers.", "docs.")):
        return []
    return _URL_PATTERN.findall(text)


def _urls_in_json(value) -> list[str]:
    if isinstance(value, str):
        return _urls_in_text(value)
    if isinstance(value, dict):
        return [url for child in value.values() for url in _urls_in_json(child)]
    if isinstance(value, list):
        return [url for child in value for url in _urls_in_json(child)]
    return []


def extract_documentation_urls(value: str) -> list[str]:
    """Find documentation URLs in a stored value, JSON or plain text."""
    try:
        urls = _urls_in_json(orjson.loads(value))
    except orjson.JSONDecodeError:
        urls = [
            url for url in _URL_PATTERN.findall(value)
            if any(marker in url for marker in DOC_URL_MARKERS)
        ]
    unique = list(dict.fromkeys(urls))
    return [url for url in unique if is_valid_documentation_url(url)]


def _title(text: str) -> str:
    return text.replace("-", " ").title()


def documentation_domain(url: str) -> str:
    """Name the site a documentation URL belongs to, for grouping."""
    host = urlparse(url).hostname or ""
    if not host:
        return "Other"
    if "developers.facebook.com" in host:
        return "Facebook Developers"
    if "developers.google.com" in host:
        return "Google Developers"
    if "docs.flutter.dev" in host:
        return "Flutter"
    if "docs.cursor.com" in host:
        return "Cursor"
    if "help.gradle.org" in host:
        return "Gradle"
    if "docs." in host:
        return _title(host.replace("docs.", "").split(".")[0])
    if "api" in host or "cursor" in host:
        return "Cursor Services"
    parts = host.split(".")
    return _title(parts[-2]) if len(parts) >= 2 else host


def documentation_name(url: str) -> str:
    """Derive a readable title for a documentation URL."""
    parsed = urlparse(url)
    host = parsed.hostname or ""
    path = parsed.path.strip("/")
    if "developers.facebook.com" in host:
        return "Facebook Graph API" if "graph-api" in path else "Facebook Developers"
    if "developers.google.com" in host:
        last = path.split("/")[-1] if path else ""
        return f"Google {_title(last)}" if last else "Google Developers"
    if "docs.flutter.dev" in host:
        return "Flutter Documentation"
    if "docs.cursor.com" in host:
        return "Cursor Documentation"
    if "docs." in host:
        return f"{_title(host.replace('docs.', '').split('.')[0])} Documentation"
    return f"{host} - {path}"


def discover_documentation_groups(user_dir: Path | str) -> list[DocumentationGroup]:
    """Group the documentation URLs found in the global store by site.

    Groups are sorted by name and their entries by title. A missing or
    unreadable store yields no groups.
    """
    db_path = global_state_db(Path(user_dir))
    if not db_path.is_file():
        return []

    store = StateStore(db_path)
    by_domain: dict[str, list[SettingItem]] = {}
    found: set[str] = set()
    try:
        for prefix in DOC_KEY_PREFIXES:
            for key, value in store.scan_by_prefix(prefix, DISK_KV_TABLE):
                if not value or not any(marker in value for marker in DOC_URL_MARKERS):
                    continue
                for url in extract_documentation_urls(value):
                    if url in found:
                        continue
                    found.add(url)
                    by_domain.setdefault(documentation_domain(url), []).append(SettingItem(
                        id=f"doc:{url}",
                        name=documentation_name(url),
                        description=f"Documentation URL: {url}\nSource: {key}",
                        category="Documentation",
                        path=db_path,
                        kind=SettingKind.DOCUMENTATION,
                        is_available=True,
                        url=url,
                    ))
    except StoreUnavailable as e:
        logger.warning("Could not read documentation from %s: %s", e.path, e.reason)
        return []

    groups = [
        DocumentationGroup(name=domain, items=sorted(items, key=lambda item: item.name))
        for domain, items in sorted(by_domain.items())
    ]
    logger.info("Found %d documentation URLs in %d groups", len(found), len(groups))
    return groups
