"""Assemble conversation documents from the state stores and chat files.

Every entry point returns a best-effort ``ConversationDocument``. Sources
that cannot be read are recorded in ``document.skipped`` instead of raising.
"""

import hashlib
import logging
from pathlib import Path

import orjson

from .chat_files import load_chat_file, parse_chat_json
from .errors import MalformedRecord, StoreUnavailable
from .extractors import extract_bubbles, extract_generations, extract_prompts
from .matcher import DEFAULT_CONFIG, MatchConfig, group_prompts_by_sessions, match_turn
from .models import (
    Bubble,
    ChatKind,
    ChatRef,
    ConversationDocument,
    ConversationTurn,
    Generation,
    Prompt,
    Role,
    SkippedItem,
)
from .store import (
    BUBBLE_PREFIX,
    COMPOSER_PANE_PREFIX,
    DISK_KV_TABLE,
    GENERATIONS_KEY,
    PROMPTS_KEY,
    StateStore,
)
from .threads import find_thread

logger = logging.getLogger(__name__)

UI_STATE_KEYS = frozenset({"collapsed", "ishidden", "size", "numberofvisibleviews"})
CHAT_CONTENT_KEYS = frozenset({"message", "content", "role", "requests", "sessionid", "messages"})


def content_fingerprint(text: str | bytes | None) -> str:
    """MD5 hex digest of ``text`` with line endings unified and ends trimmed.

    Used only to recognize duplicate content, never for security.
    """
    if text is None:
        text = ""
    if isinstance(text, bytes):
        text = text.decode("utf-8", errors="replace")
    normalized = text.replace("\r\n", "\n").replace("\r", "\n").strip()
    return hashlib.md5(normalized.encode("utf-8")).hexdigest()


def document_fingerprint(document: ConversationDocument) -> str:
    """Fingerprint of a document's turns, ignoring its title and metadata."""
    body = "\n".join(f"{turn.role.value}:{turn.text}" for turn in document.turns)
    return content_fingerprint(body)


def is_real_chat_record(raw: str | bytes | None) -> bool:
    """Return True if a stored record holds chat data rather than panel UI state."""
    if not raw:
        return False
    try:
        data = orjson.loads(raw)
    except orjson.JSONDecodeError:
        return False
    if not isinstance(data, dict) or not data:
        return False
    keys = {str(key).lower() for key in data}
    if keys <= UI_STATE_KEYS:
        return False
    return bool(keys & CHAT_CONTENT_KEYS)


def deduplicate_documents(documents: list[ConversationDocument]) -> list[ConversationDocument]:
    """Drop documents whose turns repeat those of an earlier document.

    Documents without turns are always kept.
    """
    seen: set[str] = set()
    unique = []
    for document in documents:
        if document.turns:
            fingerprint = document_fingerprint(document)
            if fingerprint in seen:
                logger.debug("Dropping duplicate document %s", document.title)
                continue
            seen.add(fingerprint)
        unique.append(document)
    return unique


def build_state_document(
    project_name: str,
    chat_type: str,
    prompts: list[Prompt],
    bubble_sessions: dict[str, list[Bubble]],
    generations: list[Generation],
    source_description: str = "",
    config: MatchConfig = DEFAULT_CONFIG,
) -> ConversationDocument:
    """Pair each prompt with its matched response, in prompt order."""
    document = ConversationDocument(
        project_name=project_name,
        chat_type=chat_type,
        source_description=source_description,
    )
    number = 0
    for prompt in prompts:
        if not prompt.text.strip():
            continue
        number += 1
        document.add_turn(
            ConversationTurn(
                role=Role.USER,
                text=prompt.text,
                timestamp_ms=prompt.timestamp_ms,
                command_type=prompt.command_type,
                number=number,
            ),
            new_exchange=True,
        )
        matched = match_turn(prompt, bubble_sessions, generations, config)
        if matched.response is not None:
            document.add_turn(ConversationTurn(
                role=Role.ASSISTANT,
                text=matched.response,
                timestamp_ms=matched.response_timestamp_ms,
                number=number,
            ))
    logger.debug(
        "Built %s: %d prompts, %d responses",
        document.title, document.prompt_count, document.response_count,
    )
    return document


def _read_prompts_and_generations(
    ref: ChatRef, skipped: list[SkippedItem]
) -> tuple[list[Prompt], list[Generation]]:
    if not ref.workspace_db:
        skipped.append(SkippedItem(ref.chat_id, "no workspace state store"))
        return [], []
    store = StateStore(ref.workspace_db)
    try:
        prompts_raw = store.get_value(PROMPTS_KEY)
        generations_raw = store.get_value(GENERATIONS_KEY)
    except StoreUnavailable as e:
        logger.warning("%s", e)
        skipped.append(SkippedItem(e.path, e.reason))
        return [], []
    return (
        extract_prompts(prompts_raw, skipped),
        extract_generations(generations_raw, skipped),
    )


def _read_bubbles(ref: ChatRef, skipped: list[SkippedItem]) -> dict[str, list[Bubble]]:
    # Bubbles normally live in the global store; older hosts kept them per workspace.
    path = ref.global_db or ref.workspace_db
    if not path:
        return {}
    try:
        rows = StateStore(path).scan_by_prefix(BUBBLE_PREFIX, table=DISK_KV_TABLE)
    except StoreUnavailable as e:
        logger.warning("%s", e)
        skipped.append(SkippedItem(e.path, e.reason))
        return {}
    return extract_bubbles(rows, skipped)


def _document_from_parsed_turns(document: ConversationDocument, turns) -> ConversationDocument:
    for parsed in turns:
        document.add_turn(
            ConversationTurn(role=parsed.role, text=parsed.text, timestamp_ms=parsed.timestamp_ms),
            new_exchange=parsed.new_exchange,
        )
    return document


def _load_pane_turns(ref: ChatRef, document: ConversationDocument) -> bool:
    """Fill ``document`` from a stored composer pane record, if it parses."""
    key = f"{COMPOSER_PANE_PREFIX}{ref.session_id}"
    try:
        raw = StateStore(ref.workspace_db).get_value(key)
    except StoreUnavailable as e:
        logger.warning("%s", e)
        document.skipped.append(SkippedItem(e.path, e.reason))
        return False
    if not raw:
        return False
    try:
        record = parse_chat_json(raw, key)
    except MalformedRecord as e:
        logger.debug("Pane record is not a chat transcript: %s", e)
        return False
    _document_from_parsed_turns(document, record.turns)
    return bool(document.turns)


def load_state_conversation(
    ref: ChatRef, config: MatchConfig = DEFAULT_CONFIG
) -> ConversationDocument:
    """Reconstruct a combined, thread, session or pane chat from the stores."""
    document = ConversationDocument(
        project_name=ref.project_name,
        chat_type=ref.chat_type,
        source_description=ref.workspace_db or ref.source_path,
    )
    skipped = document.skipped

    if ref.kind is ChatKind.PANE and ref.workspace_db and _load_pane_turns(ref, document):
        return document

    prompts, generations = _read_prompts_and_generations(ref, skipped)
    if not prompts:
        return document
    bubble_sessions = _read_bubbles(ref, skipped)

    if ref.kind is ChatKind.THREAD:
        thread = find_thread(prompts, ref.thread_number or 0)
        if thread is None:
            skipped.append(SkippedItem(ref.chat_id, f"thread {ref.thread_number} not found"))
            return document
        prompts = thread.prompts
    elif ref.kind is ChatKind.SESSION:
        sessions = group_prompts_by_sessions(prompts, bubble_sessions, config)
        session = next((s for s in sessions if s.session_id == ref.session_id), None)
        if session is None:
            skipped.append(SkippedItem(ref.chat_id, f"session {ref.session_id} not found"))
            return document
        prompts = session.prompts

    built = build_state_document(
        ref.project_name,
        ref.chat_type,
        prompts,
        bubble_sessions,
        generations,
        source_description=document.source_description,
        config=config,
    )
    built.skipped = skipped + built.skipped
    return built


def load_file_conversation(
    path: Path | str, project_name: str = "", chat_type: str = "Chat File"
) -> ConversationDocument:
    """Reconstruct a conversation from a loose JSON chat file."""
    path = Path(path)
    document = ConversationDocument(
        project_name=project_name or path.parent.name,
        chat_type=chat_type,
        source_description=str(path),
    )
    try:
        record = load_chat_file(path)
    except MalformedRecord as e:
        logger.warning("%s", e)
        document.skipped.append(SkippedItem(e.source, e.reason))
        return document
    logger.debug("Parsed %s as a %s chat with %d turns", path.name, record.kind, len(record.turns))
    return _document_from_parsed_turns(document, record.turns)


def load_conversation(ref: ChatRef, config: MatchConfig = DEFAULT_CONFIG) -> ConversationDocument:
    """Load the conversation behind any discovered chat."""
    if ref.kind is ChatKind.FILE:
        return load_file_conversation(ref.source_path, ref.project_name, ref.chat_type)
    return load_state_conversation(ref, config)
