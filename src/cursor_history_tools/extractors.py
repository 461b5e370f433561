"""Turn raw store values into prompt, generation and bubble records.

The store format is undocumented and has drifted between host versions, so
every field is looked up from an ordered list of candidate names and every
failure is contained to the single record it came from.
"""

import logging
import math
from datetime import datetime

import orjson

from .errors import MalformedRecord
from .models import Bubble, Generation, Prompt, Role, SkippedItem
from .store import BUBBLE_PREFIX

logger = logging.getLogger(__name__)

PROMPT_TEXT_FIELDS = ("text", "prompt", "message", "content")
GENERATION_TEXT_FIELDS = ("textDescription", "text", "content")
TIMESTAMP_FIELDS = ("unixMs", "timestamp")

# Timestamps below this are taken to be seconds rather than milliseconds
# (10**12 ms is September 2001).
MILLISECONDS_THRESHOLD = 10**12

USER_BUBBLE_TYPE = 1


def normalize_timestamp(value) -> int | None:
    """Return an epoch value in milliseconds, or None if it is not numeric."""
    if value is None or isinstance(value, bool):
        return None
    try:
        numeric = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(numeric):
        return None
    if 0 <= numeric < MILLISECONDS_THRESHOLD:
        numeric *= 1000
    return int(numeric)


def parse_created_at(value) -> int | None:
    """Parse a bubble ``createdAt`` value into epoch milliseconds.

    Accepts ISO-8601 strings (with or without a trailing ``Z``) and bare
    epoch numbers. Anything else is unknown (None), never zero.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return normalize_timestamp(value)
    text = str(value).strip()
    if not text:
        return None
    if text.lstrip("-").replace(".", "", 1).isdigit():
        return normalize_timestamp(text)
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(text)
    except ValueError:
        return None
    try:
        return int(dt.timestamp() * 1000)
    except (OverflowError, OSError, ValueError):
        return None


def _first_text(obj: dict, fields: tuple[str, ...]) -> str | None:
    for name in fields:
        value = obj.get(name)
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            value = str(value)
        if isinstance(value, str) and value.strip():
            return value
    return None


def _first_timestamp(obj: dict) -> int | None:
    for name in TIMESTAMP_FIELDS:
        value = obj.get(name)
        if value is None or value == "":
            continue
        return normalize_timestamp(value)
    return None


def _load_array(raw_json: str | bytes | None, label: str) -> list:
    if not raw_json or not raw_json.strip():
        return []
    try:
        data = orjson.loads(raw_json)
    except orjson.JSONDecodeError as e:
        logger.warning("Could not parse %s as JSON: %s", label, e)
        return []
    if not isinstance(data, list):
        logger.warning("Expected a JSON array in %s, got %s", label, type(data).__name__)
        return []
    return data


def _record_skip(skipped: list[SkippedItem] | None, error: MalformedRecord) -> None:
    logger.warning("%s", error)
    if skipped is not None:
        skipped.append(SkippedItem(source=error.source, reason=error.reason))


def extract_prompts(
    raw_json: str | bytes | None,
    skipped: list[SkippedItem] | None = None,
) -> list[Prompt]:
    """Parse the ``aiService.prompts`` array into Prompt records.

    Elements without text are dropped but still advance ``raw_index``, so
    indexes keep pointing at positions in the full array.
    """
    prompts = []
    for index, item in enumerate(_load_array(raw_json, "aiService.prompts")):
        if isinstance(item, str):
            if item.strip():
                prompts.append(Prompt(text=item, raw_index=index))
            continue
        if not isinstance(item, dict):
            _record_skip(
                skipped,
                MalformedRecord(f"prompt #{index}", f"unexpected {type(item).__name__} entry"),
            )
            continue
        text = _first_text(item, PROMPT_TEXT_FIELDS)
        if text is None:
            continue
        command_type = item.get("commandType")
        prompts.append(Prompt(
            text=text,
            raw_index=index,
            command_type=str(command_type) if command_type not in (None, "") else None,
            timestamp_ms=_first_timestamp(item),
        ))
    return prompts


def extract_generations(
    raw_json: str | bytes | None,
    skipped: list[SkippedItem] | None = None,
) -> list[Generation]:
    """Parse the ``aiService.generations`` array into Generation records.

    Every element keeps its slot, text or not, because positional matching
    looks generations up by absolute index.
    """
    generations = []
    for index, item in enumerate(_load_array(raw_json, "aiService.generations")):
        if not isinstance(item, dict):
            _record_skip(
                skipped,
                MalformedRecord(f"generation #{index}", f"unexpected {type(item).__name__} entry"),
            )
            generations.append(Generation(raw_index=index))
            continue
        generations.append(Generation(
            raw_index=index,
            text=_first_text(item, GENERATION_TEXT_FIELDS),
            timestamp_ms=_first_timestamp(item),
        ))
    return generations


def _bubble_role(value) -> Role:
    try:
        bubble_type = int(value)
    except (TypeError, ValueError):
        return Role.ASSISTANT
    return Role.USER if bubble_type == USER_BUBBLE_TYPE else Role.ASSISTANT


def extract_bubbles(
    rows: list[tuple[str, str]],
    skipped: list[SkippedItem] | None = None,
) -> dict[str, list[Bubble]]:
    """Group ``bubbleId:<sessionId>:<bubbleId>`` rows into ordered sessions.

    Within a session bubbles are ordered by creation time; a missing time
    sorts as 0 and ties keep scan order.
    """
    grouped: dict[str, list[Bubble]] = {}
    for key, value in rows:
        parts = key.split(":")
        if not key.startswith(BUBBLE_PREFIX) or len(parts) < 2 or not parts[1]:
            _record_skip(skipped, MalformedRecord(key, "unexpected bubble key format"))
            continue
        session_id = parts[1]
        try:
            data = orjson.loads(value)
        except orjson.JSONDecodeError as e:
            _record_skip(skipped, MalformedRecord(key, f"invalid JSON: {e}"))
            continue
        if not isinstance(data, dict):
            _record_skip(skipped, MalformedRecord(key, "bubble value is not an object"))
            continue

        text = data.get("text")
        text = text.strip() if isinstance(text, str) else ""
        if not text:
            continue

        grouped.setdefault(session_id, []).append(Bubble(
            session_id=session_id,
            role=_bubble_role(data.get("type")),
            text=text,
            created_at_ms=parse_created_at(data.get("createdAt")),
        ))

    sessions = {}
    for session_id, bubbles in grouped.items():
        ordered = sorted(bubbles, key=lambda b: b.created_at_ms or 0)
        sessions[session_id] = [
            Bubble(
                session_id=b.session_id,
                role=b.role,
                text=b.text,
                created_at_ms=b.created_at_ms,
                raw_order=position,
            )
            for position, b in enumerate(ordered)
        ]
    logger.debug("Extracted %d bubble sessions from %d rows", len(sessions), len(rows))
    return sessions
