"""Tests for the markdown exporter module."""

from datetime import datetime

import orjson
import pytest

from cursor_history_tools import markdown_exporter
from cursor_history_tools.assembler import load_conversation
from cursor_history_tools.discovery import discover_projects
from cursor_history_tools.markdown_exporter import (
    _sanitize_filename,
    conversation_to_markdown,
    export_chats,
    export_conversation_to_file,
    format_timestamp,
    generate_chat_filename,
)
from cursor_history_tools.models import (
    ChatKind,
    ChatRef,
    ConversationDocument,
    ConversationTurn,
    Role,
    SkippedItem,
)
from cursor_history_tools.store import PROMPTS_KEY

EXPORTED_AT = datetime(2024, 2, 3, 4, 5, 6)


@pytest.fixture
def sample_document():
    """Create a two-exchange document for testing."""
    document = ConversationDocument(
        project_name="web-app",
        chat_type="Thread 1",
        source_description="/tmp/ws/state.vscdb",
    )
    document.add_turn(ConversationTurn(
        role=Role.USER, text="How do I center a div?", command_type="4", number=1,
    ), new_exchange=True)
    document.add_turn(ConversationTurn(
        role=Role.ASSISTANT, text="Use flexbox with justify-content: center.", number=1,
    ))
    document.add_turn(ConversationTurn(
        role=Role.USER, text="Thanks!", command_type="unknown", number=2,
    ), new_exchange=True)
    return document


def _file_ref(path, project="proj", chat_id="chat_1") -> ChatRef:
    return ChatRef(
        kind=ChatKind.FILE, chat_id=chat_id, name=f"Chat: {path.name}",
        project_name=project, source_path=str(path),
    )


class TestConversationToMarkdown:
    """Tests for markdown rendering."""

    def test_header_and_metadata(self, sample_document):
        """Test the title line and metadata block."""
        markdown = conversation_to_markdown(sample_document, exported_at=EXPORTED_AT)
        lines = markdown.splitlines()
        assert lines[0] == "# Chat: web-app - Thread 1"
        assert "**Source:** /tmp/ws/state.vscdb" in lines
        assert "**Export Date:** 2024-02-03 04:05:06" in lines
        assert "**Total Prompts:** 2" in lines
        assert "**Total Responses:** 1" in lines

    def test_turn_sections(self, sample_document):
        """Test turn headers, numbering and separators."""
        markdown = conversation_to_markdown(sample_document, exported_at=EXPORTED_AT)
        assert "## USER (Prompt #1)\n**Command Type:** 4\n\nHow do I center a div?\n\n---\n" in markdown
        assert "## ASSISTANT (Response #1)\n\nUse flexbox with justify-content: center.\n\n---\n" in markdown
        assert "## USER (Prompt #2)\n\nThanks!" in markdown
        assert markdown.index("Prompt #1") < markdown.index("Response #1") < markdown.index("Prompt #2")

    def test_unknown_command_type_hidden(self, sample_document):
        """Test that the placeholder command type is not rendered."""
        markdown = conversation_to_markdown(sample_document, exported_at=EXPORTED_AT)
        assert "**Command Type:** unknown" not in markdown

    def test_time_line(self):
        """Test that turn timestamps are rendered."""
        document = ConversationDocument("p", "Combined", "src")
        ts = int(datetime(2024, 1, 1, 12, 0, 0).timestamp() * 1000)
        document.add_turn(ConversationTurn(role=Role.USER, text="hi", timestamp_ms=ts))
        markdown = conversation_to_markdown(document, exported_at=EXPORTED_AT)
        assert "**Time:** 2024-01-01 12:00:00" in markdown

    def test_footer(self, sample_document):
        """Test the closing totals line."""
        markdown = conversation_to_markdown(sample_document, exported_at=EXPORTED_AT)
        assert markdown.rstrip().endswith(
            "**Total Messages Exported:** 2 prompts, 1 assistant responses"
        )

    def test_skipped_items_listed(self, sample_document):
        """Test that skipped sources are reported in the metadata."""
        sample_document.skipped.append(SkippedItem("/g/state.vscdb", "file not found"))
        markdown = conversation_to_markdown(sample_document, exported_at=EXPORTED_AT)
        assert "**Skipped Items:** 1" in markdown
        assert "- `/g/state.vscdb`: file not found" in markdown

    def test_deterministic_for_fixed_export_time(self, sample_document):
        """Test idempotent rendering."""
        first = conversation_to_markdown(sample_document, exported_at=EXPORTED_AT)
        second = conversation_to_markdown(sample_document, exported_at=EXPORTED_AT)
        assert first == second

    def test_empty_document(self):
        """Test that an empty document still renders."""
        markdown = conversation_to_markdown(
            ConversationDocument("p", "Combined", "src"), exported_at=EXPORTED_AT
        )
        assert "**Total Prompts:** 0" in markdown
        assert "## USER" not in markdown


class TestFormatTimestamp:
    """Tests for timestamp formatting."""

    def test_milliseconds(self):
        """Test a normal epoch value."""
        ts = int(datetime(2024, 5, 6, 7, 8, 9).timestamp() * 1000)
        assert format_timestamp(ts) == "2024-05-06 07:08:09"

    def test_missing(self):
        """Test that missing values render as nothing."""
        assert format_timestamp(None) == ""
        assert format_timestamp(0) == ""


class TestFilenames:
    """Tests for filename generation."""

    def test_sanitize(self):
        """Test unsafe characters and length."""
        assert _sanitize_filename("my project/v2: notes") == "my_project_v2__notes"
        assert len(_sanitize_filename("x" * 200)) == 80
        assert _sanitize_filename("...") == "chat"

    def test_names_per_kind(self, tmp_path):
        """Test the filename for each chat kind."""
        base = dict(chat_id="c", name="n", project_name="web app", source_path="/x/abc.json")
        assert generate_chat_filename(ChatRef(kind=ChatKind.FILE, **base)) == "abc.md"
        assert generate_chat_filename(ChatRef(kind=ChatKind.COMBINED, **base)) == "web_app_combined.md"
        assert generate_chat_filename(
            ChatRef(kind=ChatKind.THREAD, thread_number=3, **base)
        ) == "web_app_thread_3.md"
        assert generate_chat_filename(
            ChatRef(kind=ChatKind.SESSION, session_id="s-1", **base)
        ) == "web_app_session_s-1.md"


class TestExport:
    """Tests for writing files."""

    def test_export_conversation_to_file(self, sample_document, tmp_path):
        """Test writing a single document."""
        path = tmp_path / "out.md"
        export_conversation_to_file(sample_document, path, exported_at=EXPORTED_AT)
        assert path.read_text(encoding="utf-8") == conversation_to_markdown(
            sample_document, exported_at=EXPORTED_AT
        )

    def test_export_chats_writes_per_project(self, tmp_path):
        """Test the batch export layout and result."""
        chat = tmp_path / "src" / "chat.json"
        chat.parent.mkdir()
        chat.write_bytes(orjson.dumps({"messages": [{"role": "user", "content": "hi"}]}))

        result = export_chats([_file_ref(chat, project="My Proj")], tmp_path / "out",
                              exported_at=EXPORTED_AT)
        assert result.success_count == 1
        assert result.errors == []
        assert result.written == [tmp_path / "out" / "My_Proj" / "chat.md"]
        assert "hi" in result.written[0].read_text(encoding="utf-8")

    def test_duplicates_skipped_not_errors(self, tmp_path):
        """Test that identical content is exported once and reported as skipped."""
        src = tmp_path / "src"
        src.mkdir()
        for name in ("a.json", "b.json"):
            (src / name).write_bytes(orjson.dumps({"messages": [{"role": "user", "content": "same"}]}))
        refs = [_file_ref(src / "a.json", chat_id="a"), _file_ref(src / "b.json", chat_id="b")]

        result = export_chats(refs, tmp_path / "out", exported_at=EXPORTED_AT)
        assert result.success_count == 1
        assert result.errors == []
        assert len(result.skipped) == 1
        assert result.skipped[0].chat_id == "b"
        assert "Same content as a" in result.skipped[0].message

    def test_same_file_name_gets_suffix(self, tmp_path):
        """Test that chats mapping to one file name do not overwrite each other."""
        for folder, content in (("one", "first chat"), ("two", "second chat")):
            (tmp_path / folder).mkdir()
            (tmp_path / folder / "chat.json").write_bytes(
                orjson.dumps({"messages": [{"role": "user", "content": content}]})
            )
        refs = [
            _file_ref(tmp_path / "one" / "chat.json", chat_id="one"),
            _file_ref(tmp_path / "two" / "chat.json", chat_id="two"),
        ]

        result = export_chats(refs, tmp_path / "out", exported_at=EXPORTED_AT)
        assert result.success_count == 2
        assert [p.name for p in result.written] == ["chat.md", "chat_2.md"]
        assert "first chat" in result.written[0].read_text(encoding="utf-8")
        assert "second chat" in result.written[1].read_text(encoding="utf-8")

    def test_same_named_workspaces_both_exported(self, tmp_path, make_state_db):
        """Test two workspaces whose folders share a name."""
        user_dir = tmp_path / "User"
        for ws, folder, prompt in (
            ("ws-a", "file:///a/app", "first workspace prompt"),
            ("ws-b", "file:///b/app", "second workspace prompt"),
        ):
            ws_dir = user_dir / "workspaceStorage" / ws
            ws_dir.mkdir(parents=True)
            (ws_dir / "workspace.json").write_bytes(orjson.dumps({"folder": folder}))
            make_state_db(ws_dir / "state.vscdb", items={PROMPTS_KEY: [{"text": prompt}]})

        projects = discover_projects(user_dir, current_dirs=[])
        assert [p.name for p in projects] == ["app"]
        refs = [chat for chat in projects[0].chats if chat.kind is ChatKind.COMBINED]
        assert len(refs) == 2

        result = export_chats(refs, tmp_path / "out", exported_at=EXPORTED_AT)
        assert result.success_count == 2
        assert len(set(result.written)) == 2
        texts = " ".join(p.read_text(encoding="utf-8") for p in result.written)
        assert "first workspace prompt" in texts
        assert "second workspace prompt" in texts

    def test_load_failure_does_not_abort_batch(self, tmp_path, monkeypatch):
        """Test that an unexpected error rebuilding one chat is recorded per item."""
        src = tmp_path / "src"
        src.mkdir()
        (src / "a.json").write_bytes(orjson.dumps({"messages": [{"role": "user", "content": "one"}]}))
        (src / "b.json").write_bytes(orjson.dumps({"messages": [{"role": "user", "content": "two"}]}))
        real_load = markdown_exporter.load_conversation

        def flaky_load(ref, config):
            if ref.chat_id == "a":
                raise OverflowError("cannot convert float infinity to integer")
            return real_load(ref, config)

        monkeypatch.setattr(markdown_exporter, "load_conversation", flaky_load)
        refs = [_file_ref(src / "a.json", chat_id="a"), _file_ref(src / "b.json", chat_id="b")]

        result = export_chats(refs, tmp_path / "out", exported_at=EXPORTED_AT)
        assert result.success_count == 1
        assert [e.chat_id for e in result.errors] == ["a"]
        assert result.errors[0].message.startswith("Load failed")

    def test_infinite_timestamp_in_store_exports(self, tmp_path, make_state_db):
        """Test that an overflowing stored timestamp does not stop the export."""
        db = make_state_db(tmp_path / "ws" / "state.vscdb", items={
            PROMPTS_KEY: [{"text": "hello there", "unixMs": "1e400"}],
        })
        ref = ChatRef(
            kind=ChatKind.COMBINED, chat_id="ws_combined", name="Combined",
            project_name="proj", source_path=str(tmp_path / "ws" / "proj_combined.json"),
            workspace_db=str(db),
        )
        result = export_chats([ref], tmp_path / "out", exported_at=EXPORTED_AT)
        assert result.errors == []
        assert result.success_count == 1
        assert "hello there" in result.written[0].read_text(encoding="utf-8")

    def test_write_failure_does_not_abort_batch(self, tmp_path):
        """Test per-item error collection."""
        src = tmp_path / "src"
        src.mkdir()
        (src / "a.json").write_bytes(orjson.dumps({"messages": [{"role": "user", "content": "one"}]}))
        (src / "b.json").write_bytes(orjson.dumps({"messages": [{"role": "user", "content": "two"}]}))
        out = tmp_path / "out"
        out.mkdir()
        # A file where the project directory should go
        (out / "blocked").write_text("x", encoding="utf-8")

        refs = [
            _file_ref(src / "a.json", project="blocked", chat_id="a"),
            _file_ref(src / "b.json", project="open", chat_id="b"),
        ]
        result = export_chats(refs, out, exported_at=EXPORTED_AT)
        assert result.success_count == 1
        assert [e.chat_id for e in result.errors] == ["a"]
        assert result.errors[0].message.startswith("Write failed")


class TestPipelineIdempotence:
    """Tests that rebuilding unchanged stores gives identical output."""

    def _render_all(self, user_dir) -> dict[str, str]:
        rendered = {}
        for project in discover_projects(user_dir, current_dirs=[]):
            for ref in project.chats:
                document = load_conversation(ref)
                rendered[ref.chat_id] = conversation_to_markdown(document, exported_at=EXPORTED_AT)
        return rendered

    def test_discover_load_render_twice(self, cursor_user_dir):
        """Test the full rebuild from discovery to markdown."""
        first = self._render_all(cursor_user_dir)
        second = self._render_all(cursor_user_dir)
        assert first
        assert first == second

    def test_export_twice_same_bytes(self, cursor_user_dir, tmp_path):
        """Test that a second export writes byte-identical files."""
        outputs = []
        for run in ("first", "second"):
            refs = [
                ref for project in discover_projects(cursor_user_dir, current_dirs=[])
                for ref in project.chats
            ]
            out = tmp_path / run
            export_chats(refs, out, exported_at=EXPORTED_AT)
            outputs.append({
                path.relative_to(out): path.read_bytes()
                for path in sorted(out.rglob("*.md"))
            })
        assert outputs[0]
        assert outputs[0] == outputs[1]
