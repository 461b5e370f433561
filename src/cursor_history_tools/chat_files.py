"""Parse loose JSON chat files into normalized turns.

Cursor has written chat files in several shapes over time. Each shape is a
variant of a small tagged union, tried in a fixed order:

- ``RequestsChat``: ``{"requests": [{"message": ..., "response": [...]}]}``
- ``MessagesChat``: ``{"messages": [{"role": ..., "content": ...}]}``
- ``ConversationsChat``: ``{"conversations": [{"title": ..., "messages": [...]}]}``
- ``SingleMessageChat``: a lone ``{"role": ..., "content": ...}`` object

Only ``ParsedTurn`` values leave this module; raw dicts never do.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path

import orjson

from .errors import MalformedRecord
from .extractors import normalize_timestamp
from .models import Role

logger = logging.getLogger(__name__)

# Keys that, in a chat file's text, suggest chat content
CHAT_CONTENT_HINTS = (
    ("requests", "message"),
    ("requests", "response"),
    ("sessionid", "creationdate"),
    ("messages", "role"),
    ("conversation",),
)


@dataclass
class ParsedTurn:
    """One turn read from a chat file."""

    role: Role
    text: str
    timestamp_ms: int | None = None
    new_exchange: bool = False  # Starts a new prompt/response pair


@dataclass
class RequestsChat:
    turns: list[ParsedTurn] = field(default_factory=list)
    kind: str = "requests"


@dataclass
class MessagesChat:
    turns: list[ParsedTurn] = field(default_factory=list)
    kind: str = "messages"


@dataclass
class ConversationsChat:
    turns: list[ParsedTurn] = field(default_factory=list)
    titles: list[str] = field(default_factory=list)
    kind: str = "conversations"


@dataclass
class SingleMessageChat:
    turns: list[ParsedTurn] = field(default_factory=list)
    kind: str = "single"


ChatRecord = RequestsChat | MessagesChat | ConversationsChat | SingleMessageChat


def _role_from(value) -> Role:
    if isinstance(value, str) and value.strip().lower() == Role.USER.value:
        return Role.USER
    return Role.ASSISTANT


def _as_text(value) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return ""


def _join_parts(parts) -> str:
    if not isinstance(parts, list):
        return ""
    texts = []
    for part in parts:
        if isinstance(part, str):
            texts.append(part)
        elif isinstance(part, dict) and part.get("text") is not None:
            texts.append(_as_text(part["text"]))
    return "\n".join(texts)


def _object_text(obj: dict) -> str:
    """Text from an object holding ``text``, ``parts`` or ``content``."""
    if obj.get("text") is not None:
        return _as_text(obj["text"])
    if obj.get("parts") is not None:
        return _join_parts(obj["parts"])
    if obj.get("content") is not None:
        return _content_text(obj["content"])
    return ""


def _content_text(content) -> str:
    # Newer files store content as a list of {"type": "text", "text": ...} parts
    if isinstance(content, list):
        return _join_parts(content)
    return _as_text(content)


def _message_text(message) -> str:
    if isinstance(message, str):
        return message
    if isinstance(message, dict):
        return _object_text(message)
    return ""


def _response_text(item) -> str:
    if isinstance(item, str):
        return item
    if not isinstance(item, dict):
        return ""
    if item.get("message") is not None:
        return _message_text(item["message"])
    if item.get("value") is not None:
        return _as_text(item["value"])
    if item.get("text") is not None:
        return _as_text(item["text"])
    if item.get("parts") is not None:
        return _join_parts(item["parts"])
    if item.get("content") is not None:
        return _content_text(item["content"])
    return ""


def _parse_requests(requests: list) -> RequestsChat:
    chat = RequestsChat()
    for request in requests:
        if not isinstance(request, dict):
            continue
        timestamp = normalize_timestamp(request.get("timestamp"))

        role = Role.USER
        if request.get("message") is not None:
            message = request["message"]
            text = _message_text(message)
            if isinstance(message, dict) and message.get("role") is not None:
                role = _role_from(message["role"])
        elif request.get("role") is not None:
            role = _role_from(request["role"])
            text = _as_text(request.get("content")) or _as_text(request.get("text"))
        else:
            text = _as_text(request.get("text"))

        if text.strip():
            chat.turns.append(ParsedTurn(role, text, timestamp, new_exchange=role is Role.USER))

        responses = request.get("response")
        if isinstance(responses, (str, dict)):
            responses = [responses]
        if not isinstance(responses, list):
            continue
        for item in responses:
            response = _response_text(item)
            if response.strip():
                chat.turns.append(ParsedTurn(Role.ASSISTANT, response, timestamp))
    return chat


def _parse_message_list(messages: list) -> list[ParsedTurn]:
    turns = []
    for message in messages:
        if not isinstance(message, dict):
            continue
        text = _content_text(message.get("content"))
        if not text.strip():
            continue
        role = _role_from(message.get("role"))
        turns.append(ParsedTurn(
            role=role,
            text=text,
            timestamp_ms=normalize_timestamp(message.get("timestamp")),
            new_exchange=role is Role.USER,
        ))
    return turns


def parse_chat_record(data, source: str = "<record>") -> ChatRecord:
    """Classify a decoded chat record and extract its turns.

    Raises ``MalformedRecord`` if the value matches none of the known shapes.
    """
    if not isinstance(data, dict):
        raise MalformedRecord(source, f"expected a JSON object, got {type(data).__name__}")

    if isinstance(data.get("requests"), list):
        return _parse_requests(data["requests"])

    if isinstance(data.get("messages"), list):
        return MessagesChat(turns=_parse_message_list(data["messages"]))

    if isinstance(data.get("conversations"), list):
        chat = ConversationsChat()
        for conversation in data["conversations"]:
            if not isinstance(conversation, dict):
                continue
            chat.titles.append(_as_text(conversation.get("title")) or "Untitled Conversation")
            messages = conversation.get("messages")
            if isinstance(messages, list):
                chat.turns.extend(_parse_message_list(messages))
        return chat

    if "role" in data and "content" in data:
        return SingleMessageChat(turns=_parse_message_list([data]))

    raise MalformedRecord(source, "no requests, messages or conversations found")


def parse_chat_json(raw: str | bytes, source: str = "<record>") -> ChatRecord:
    """Decode ``raw`` and classify it with :func:`parse_chat_record`."""
    try:
        data = orjson.loads(raw)
    except orjson.JSONDecodeError as e:
        raise MalformedRecord(source, f"invalid JSON: {e}") from e
    return parse_chat_record(data, source)


def load_chat_file(path: Path) -> ChatRecord:
    """Read and parse one chat file."""
    try:
        raw = path.read_bytes()
    except OSError as e:
        raise MalformedRecord(str(path), f"cannot read file: {e}") from e
    return parse_chat_json(raw, str(path))


def looks_like_chat_file(path: Path) -> bool:
    """Cheap check that a JSON file is worth offering as a chat.

    UUID-like file names (30 to 50 characters) are accepted outright;
    otherwise the text must mention typical chat keys.
    """
    try:
        raw = path.read_bytes()
        data = orjson.loads(raw)
    except (orjson.JSONDecodeError, OSError) as e:
        logger.debug("Ignoring %s: %s", path, e)
        return False
    if data is None:
        return False
    if 30 <= len(path.stem) <= 50:
        return True
    lowered = raw.decode("utf-8", errors="replace").lower()
    return any(all(hint in lowered for hint in group) for group in CHAT_CONTENT_HINTS)
