"""Cursor History Tools - Rebuild and export Cursor IDE chat history.

Reads the prompts, generations and chat bubbles Cursor keeps in its
``state.vscdb`` stores, plus loose JSON chat files, and reassembles them
into ordered user/assistant conversations.
"""

__version__ = "0.1.0"

from .assembler import (
    content_fingerprint,
    deduplicate_documents,
    is_real_chat_record,
    load_conversation,
)
from .discovery import discover_projects, get_cursor_user_dirs
from .errors import CursorHistoryError, MalformedRecord, StoreUnavailable
from .markdown_exporter import (
    ExportResult,
    conversation_to_markdown,
    export_chats,
    export_conversation_to_file,
    generate_chat_filename,
)
from .matcher import MatchConfig, match_turn
from .models import (
    ChatKind,
    ChatRef,
    ConversationDocument,
    ConversationTurn,
    Project,
    Role,
)
from .settings import discover_documentation_groups, discover_settings
from .store import StateStore
from .threads import segment_threads

__all__ = [
    "__version__",
    "ChatKind",
    "ChatRef",
    "ConversationDocument",
    "ConversationTurn",
    "CursorHistoryError",
    "ExportResult",
    "MalformedRecord",
    "MatchConfig",
    "Project",
    "Role",
    "StateStore",
    "StoreUnavailable",
    "content_fingerprint",
    "conversation_to_markdown",
    "deduplicate_documents",
    "discover_documentation_groups",
    "discover_projects",
    "discover_settings",
    "export_chats",
    "export_conversation_to_file",
    "generate_chat_filename",
    "get_cursor_user_dirs",
    "is_real_chat_record",
    "load_conversation",
    "match_turn",
    "segment_threads",
]
