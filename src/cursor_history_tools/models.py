"""Data structures shared by the reconstruction pipeline.

Records produced by extraction (prompts, generations, bubbles) are frozen;
the conversation document is built fresh for every preview or export and is
never persisted.
"""

from dataclasses import dataclass, field
from enum import Enum


class Role(str, Enum):
    """Speaker of a bubble or conversation turn."""

    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True)
class Prompt:
    """One user input from ``aiService.prompts``."""

    text: str
    raw_index: int  # Position in the full, unfiltered prompts array
    command_type: str | None = None
    timestamp_ms: int | None = None


@dataclass(frozen=True)
class Generation:
    """A candidate assistant response from ``aiService.generations``.

    The text is frequently a stored copy of the prompt rather than a real
    response and must pass the echo check before it is used.
    """

    raw_index: int
    text: str | None = None
    timestamp_ms: int | None = None


@dataclass(frozen=True)
class Bubble:
    """One user or assistant turn from the ``cursorDiskKV`` bubble rows."""

    session_id: str
    role: Role
    text: str
    created_at_ms: int | None = None
    raw_order: int = 0  # Position within its session after sorting


@dataclass
class Thread:
    """A contiguous run of prompts split off by the keyword heuristic."""

    number: int  # 1-based, unique within a project
    prompts: list[Prompt] = field(default_factory=list)

    @property
    def start_index(self) -> int:
        """Raw index of the first prompt in the thread."""
        return self.prompts[0].raw_index if self.prompts else 0


@dataclass
class MatchedSession:
    """Prompts positively matched to one bubble conversation."""

    session_id: str
    prompts: list[Prompt] = field(default_factory=list)
    has_bubble_backed_responses: bool = False


@dataclass
class ConversationTurn:
    """The atomic unit shown to the user."""

    role: Role
    text: str
    timestamp_ms: int | None = None
    command_type: str | None = None
    number: int = 0  # Exchange number; an assistant turn shares its prompt's


@dataclass(frozen=True)
class SkippedItem:
    """A record or source that was dropped while building a result."""

    source: str
    reason: str


@dataclass
class ConversationDocument:
    """Ordered turns plus the metadata needed to render them."""

    project_name: str
    chat_type: str  # 'Combined', 'Thread N', 'Session <id>' or 'Chat File'
    source_description: str
    turns: list[ConversationTurn] = field(default_factory=list)
    skipped: list[SkippedItem] = field(default_factory=list)

    @property
    def title(self) -> str:
        return f"{self.project_name} - {self.chat_type}"

    @property
    def prompt_count(self) -> int:
        return sum(1 for turn in self.turns if turn.role is Role.USER)

    @property
    def response_count(self) -> int:
        return sum(1 for turn in self.turns if turn.role is Role.ASSISTANT)

    def add_turn(self, turn: ConversationTurn, new_exchange: bool = False) -> None:
        """Append a turn, folding it into the previous one when both share a role.

        ``new_exchange`` forces a separate turn even when the role repeats,
        e.g. for two consecutive prompts that got no response.
        """
        if not turn.text.strip():
            return
        if self.turns and not new_exchange:
            last = self.turns[-1]
            if last.role is turn.role:
                last.text = f"{last.text}\n\n{turn.text}"
                if last.timestamp_ms is None:
                    last.timestamp_ms = turn.timestamp_ms
                return
        if turn.number == 0:
            prompts_so_far = self.prompt_count
            if turn.role is Role.USER:
                turn.number = prompts_so_far + 1
            else:
                turn.number = max(prompts_so_far, 1)
        self.turns.append(turn)


class ChatKind(str, Enum):
    """Where a discoverable chat is reconstructed from."""

    FILE = "file"  # Loose JSON chat file
    COMBINED = "combined"  # Every prompt in the workspace store
    THREAD = "thread"  # One keyword-segmented thread
    SESSION = "session"  # Prompts matched to one bubble session
    PANE = "pane"  # A composerChatViewPane record in the workspace store


@dataclass
class SelectionNode:
    """Selection state for one entry of the project/chat tree."""

    label: str
    is_available: bool = True
    selected: bool = False
    children: list["SelectionNode"] = field(default_factory=list)


def set_selected(node: SelectionNode, value: bool) -> None:
    """Select or deselect a node and, recursively, its available children."""
    node.selected = value
    for child in node.children:
        if child.is_available:
            set_selected(child, value)


@dataclass
class ChatRef:
    """A discovered chat that can be previewed or exported."""

    kind: ChatKind
    chat_id: str
    name: str
    project_name: str
    source_path: str
    workspace_db: str | None = None
    global_db: str | None = None
    thread_number: int | None = None
    session_id: str | None = None
    prompt_count: int = 0
    selection: SelectionNode | None = None

    def __post_init__(self):
        if self.selection is None:
            self.selection = SelectionNode(label=self.name)

    @property
    def chat_type(self) -> str:
        if self.kind is ChatKind.THREAD:
            return f"Thread {self.thread_number}"
        if self.kind in (ChatKind.SESSION, ChatKind.PANE):
            return f"Session {self.session_id}"
        if self.kind is ChatKind.COMBINED:
            return "Combined"
        return "Chat File"


@dataclass
class Project:
    """A workspace with its discovered chats."""

    name: str
    path: str | None
    chats: list[ChatRef] = field(default_factory=list)
    is_current: bool = False
    selection: SelectionNode | None = None

    def __post_init__(self):
        if self.selection is None:
            self.selection = SelectionNode(label=self.name)

    def add_chat(self, chat: ChatRef) -> bool:
        """Add a chat unless one with the same source path is already present."""
        if any(existing.source_path == chat.source_path for existing in self.chats):
            return False
        self.chats.append(chat)
        self.selection.children.append(chat.selection)
        return True

    def selected_chats(self) -> list[ChatRef]:
        return [chat for chat in self.chats if chat.selection.selected]
