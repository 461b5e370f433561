"""Split a flat prompt history into threads.

This is a deliberately crude heuristic: a prompt whose opening words look
like the start of a new task ("create ...", "add ...", "start ...") opens a
new thread. It reproduces the host tooling's grouping rather than trying to
detect topic changes accurately.
"""

from .models import Prompt, Thread

NEW_THREAD_KEYWORDS = (
    "create",
    "implement",
    "make",
    "add",
    "a new",
    "new project",
    "start",
    "begin",
)

# Only the start of a prompt is inspected for keywords.
KEYWORD_WINDOW = 50


def starts_new_thread(text: str) -> bool:
    """Return True if a keyword appears in the first 50 lowercased characters."""
    head = text.lower()[:KEYWORD_WINDOW]
    return any(keyword in head for keyword in NEW_THREAD_KEYWORDS)


def segment_threads(prompts: list[Prompt]) -> list[Thread]:
    """Partition ``prompts`` into consecutive threads, numbered from 1."""
    threads: list[Thread] = []
    current: list[Prompt] = []

    for prompt in prompts:
        # The first prompt always opens a thread
        if current and starts_new_thread(prompt.text):
            threads.append(Thread(number=len(threads) + 1, prompts=current))
            current = []
        current.append(prompt)

    if current:
        threads.append(Thread(number=len(threads) + 1, prompts=current))
    return threads


def find_thread(prompts: list[Prompt], number: int) -> Thread | None:
    """Return thread ``number`` (1-based), or None if there is no such thread."""
    threads = segment_threads(prompts)
    if 1 <= number <= len(threads):
        return threads[number - 1]
    return None
