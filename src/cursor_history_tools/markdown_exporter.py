"""Markdown exporter for reconstructed Cursor conversations.

Exports conversation documents to markdown format with:
- A ``# Chat:`` heading naming the project and chat type
- A metadata block (source, export date, prompt and response totals)
- One section per turn, numbered by exchange, separated by horizontal rules
- A closing total line
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from .assembler import document_fingerprint, load_conversation
from .matcher import DEFAULT_CONFIG, MatchConfig
from .models import ChatKind, ChatRef, ConversationDocument, ConversationTurn, Role

logger = logging.getLogger(__name__)

# Command types that carry no information for the reader
_HIDDEN_COMMAND_TYPES = {"unknown"}


def format_timestamp(epoch_ms: int | None) -> str:
    """Format an epoch timestamp (milliseconds) as a local date string."""
    if not epoch_ms:
        return ""
    try:
        return datetime.fromtimestamp(epoch_ms / 1000).strftime("%Y-%m-%d %H:%M:%S")
    except (ValueError, OverflowError, OSError):
        return ""


def turn_to_markdown(turn: ConversationTurn) -> str:
    """Convert a single turn to markdown format."""
    lines = []

    if turn.role is Role.USER:
        lines.append(f"## USER (Prompt #{turn.number})")
    else:
        lines.append(f"## ASSISTANT (Response #{turn.number})")

    if turn.command_type and turn.command_type.lower() not in _HIDDEN_COMMAND_TYPES:
        lines.append(f"**Command Type:** {turn.command_type}")

    time_str = format_timestamp(turn.timestamp_ms)
    if time_str:
        lines.append(f"**Time:** {time_str}")

    lines.append("")
    lines.append(turn.text)
    lines.append("")
    lines.append("---")
    lines.append("")

    return "\n".join(lines)


def conversation_to_markdown(
    document: ConversationDocument,
    exported_at: datetime | None = None,
) -> str:
    """Convert a conversation document to markdown format.

    Args:
        document: The ConversationDocument to convert.
        exported_at: Export time shown in the metadata block; defaults to now.
            Passing a fixed value makes the output reproducible.

    Returns:
        Markdown string representation of the conversation.
    """
    if exported_at is None:
        exported_at = datetime.now()

    lines = []

    lines.append(f"# Chat: {document.title}")
    lines.append("")
    lines.append(f"**Source:** {document.source_description}")
    lines.append(f"**Export Date:** {exported_at.strftime('%Y-%m-%d %H:%M:%S')}")
    lines.append(f"**Total Prompts:** {document.prompt_count}")
    lines.append(f"**Total Responses:** {document.response_count}")

    if document.skipped:
        lines.append("")
        lines.append(f"**Skipped Items:** {len(document.skipped)}")
        for item in document.skipped:
            lines.append(f"- `{item.source}`: {item.reason}")

    lines.append("")
    lines.append("---")
    lines.append("")

    for turn in document.turns:
        lines.append(turn_to_markdown(turn))

    lines.append(
        f"**Total Messages Exported:** {document.prompt_count} prompts, "
        f"{document.response_count} assistant responses"
    )
    lines.append("")

    return "\n".join(lines)


def export_conversation_to_file(
    document: ConversationDocument,
    output_path: Path | str,
    exported_at: datetime | None = None,
) -> None:
    """Export a single conversation to a markdown file."""
    markdown = conversation_to_markdown(document, exported_at=exported_at)
    Path(output_path).write_text(markdown, encoding="utf-8")


def _sanitize_filename(name: str, max_length: int = 80) -> str:
    """Replace characters that are unsafe in file names and limit the length."""
    safe_name = "".join(c if c.isalnum() or c in ("-", "_", ".") else "_" for c in name)
    return safe_name.strip("._")[:max_length] or "chat"


def generate_chat_filename(ref: ChatRef) -> str:
    """Generate a filename for a chat's markdown export."""
    if ref.kind is ChatKind.FILE:
        name = Path(ref.source_path).stem
    elif ref.kind is ChatKind.THREAD:
        name = f"{ref.project_name}_thread_{ref.thread_number}"
    elif ref.kind in (ChatKind.SESSION, ChatKind.PANE):
        name = f"{ref.project_name}_session_{ref.session_id}"
    else:
        name = f"{ref.project_name}_combined"
    return f"{_sanitize_filename(name)}.md"


@dataclass
class ExportError:
    """A chat that could not be exported, or was skipped."""

    chat_id: str
    message: str


@dataclass
class ExportResult:
    """Outcome of a batch export."""

    success_count: int = 0
    errors: list[ExportError] = field(default_factory=list)
    skipped: list[ExportError] = field(default_factory=list)
    written: list[Path] = field(default_factory=list)


def _unique_path(path: Path, taken: set[Path]) -> Path:
    """Return ``path``, or ``<stem>_<n><suffix>`` if this batch already used it."""
    candidate = path
    counter = 2
    while candidate in taken:
        candidate = path.with_name(f"{path.stem}_{counter}{path.suffix}")
        counter += 1
    return candidate


def export_chats(
    refs: list[ChatRef],
    output_dir: Path | str,
    config: MatchConfig = DEFAULT_CONFIG,
    exported_at: datetime | None = None,
) -> ExportResult:
    """Export every chat in ``refs`` to ``output_dir/<project>/<chat>.md``.

    A chat that fails to load or write is recorded in ``result.errors`` and
    the batch moves on. A chat whose content duplicates one already exported
    is recorded in ``result.skipped``. Chats that would land on the same file
    name (same-named workspaces merged into one project) get a numeric suffix
    instead of overwriting each other.
    """
    output_dir = Path(output_dir)
    result = ExportResult()
    seen: dict[str, str] = {}
    taken: set[Path] = set()

    for ref in refs:
        try:
            document = load_conversation(ref, config)
        except Exception as e:
            logger.exception("Could not rebuild %s", ref.chat_id)
            result.errors.append(ExportError(ref.chat_id, f"Load failed: {e}"))
            continue

        if document.turns:
            fingerprint = document_fingerprint(document)
            if fingerprint in seen:
                result.skipped.append(ExportError(
                    ref.chat_id, f"Same content as {seen[fingerprint]}"
                ))
                continue
            seen[fingerprint] = ref.chat_id

        project_dir = output_dir / _sanitize_filename(ref.project_name or "unknown")
        path = _unique_path(project_dir / generate_chat_filename(ref), taken)
        try:
            project_dir.mkdir(parents=True, exist_ok=True)
            export_conversation_to_file(document, path, exported_at=exported_at)
        except OSError as e:
            logger.warning("Could not write %s: %s", path, e)
            result.errors.append(ExportError(ref.chat_id, f"Write failed: {e}"))
            continue

        taken.add(path)
        logger.debug("Exported %s to %s", ref.chat_id, path)
        result.success_count += 1
        result.written.append(path)

    logger.info(
        "Exported %d chats, %d errors, %d skipped",
        result.success_count, len(result.errors), len(result.skipped),
    )
    return result
