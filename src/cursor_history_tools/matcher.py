"""Match prompts to their assistant responses.

The host keeps user prompts (``aiService.prompts``), candidate responses
(``aiService.generations``) and the live chat bubbles (``cursorDiskKV``) in
separate places with no shared identifier. Responses are recovered by a
layered, first-fit heuristic:

1. find a user bubble whose text matches the prompt (exact, containment,
   then word overlap; strict first, lenient second) and take the assistant
   bubbles that follow it;
2. failing that, take the user bubble closest in time to the prompt;
3. independently, pick the generation closest in time to the prompt, or the
   one at the prompt's absolute position;
4. reject any candidate that is really a copy of the prompt, prefer the
   longer survivor, and reject again.

No global assignment is attempted; known imperfections of first-fit
matching are part of the behavior.
"""

import logging
from dataclasses import dataclass

from .models import Bubble, Generation, MatchedSession, Prompt, Role

logger = logging.getLogger(__name__)

UNMATCHED_SESSION_ID = "unmatched"


@dataclass(frozen=True)
class MatchConfig:
    """Tunable thresholds shared by preview, export and discovery."""

    bubble_compare_chars: int = 200
    echo_compare_chars: int = 100
    # Some export flows use a looser 30 here
    containment_min_length: int = 50
    echo_containment_min_length: int = 50
    min_words: int = 3
    strict_similarity: float = 0.6
    lenient_similarity: float = 0.4
    timestamp_window_ms: int = 3_600_000


DEFAULT_CONFIG = MatchConfig()


@dataclass
class MatchedTurn:
    """A prompt with its chosen response, or ``response=None`` for no match."""

    prompt: Prompt
    response: str | None = None
    response_timestamp_ms: int | None = None
    source: str | None = None  # 'bubble' or 'generation'


def normalize_text(text: str | None, limit: int | None = None) -> str:
    """Collapse line breaks to spaces, trim, and cut to ``limit`` characters."""
    if not text:
        return ""
    normalized = text.replace("\r", "").replace("\n", " ").strip()
    if limit is not None:
        normalized = normalized[:limit]
    return normalized


def word_similarity(a: str, b: str) -> float:
    """Shared distinct words over the longer word count, case-insensitive."""
    words_a = a.lower().split()
    words_b = b.lower().split()
    longest = max(len(words_a), len(words_b))
    if longest == 0:
        return 0.0
    return len(set(words_a) & set(words_b)) / longest


def _contains_either(a: str, b: str) -> bool:
    a_lower, b_lower = a.lower(), b.lower()
    return a_lower in b_lower or b_lower in a_lower


def texts_match(
    prompt_text: str,
    bubble_text: str,
    lenient: bool = False,
    config: MatchConfig = DEFAULT_CONFIG,
) -> bool:
    """Decide whether a user bubble records the same input as a prompt."""
    a = normalize_text(prompt_text, config.bubble_compare_chars)
    b = normalize_text(bubble_text, config.bubble_compare_chars)
    if not a or not b:
        return False

    if a.lower() == b.lower():
        return True

    minimum = config.containment_min_length
    if len(a) > minimum and len(b) > minimum and _contains_either(a, b):
        return True

    if len(a.split()) >= config.min_words and len(b.split()) >= config.min_words:
        threshold = config.lenient_similarity if lenient else config.strict_similarity
        if word_similarity(a, b) >= threshold:
            return True

    return False


def is_prompt_echo(
    prompt_text: str | None,
    candidate: str | None,
    config: MatchConfig = DEFAULT_CONFIG,
) -> bool:
    """Return True if ``candidate`` is a stored copy of the prompt, not a response."""
    p = normalize_text(prompt_text, config.echo_compare_chars)
    c = normalize_text(candidate, config.echo_compare_chars)
    if not p or not c:
        return False
    if p.lower() == c.lower():
        return True
    minimum = config.echo_containment_min_length
    return len(p) > minimum and len(c) > minimum and _contains_either(p, c)


def _collect_assistant_parts(
    prompt_text: str,
    session: list[Bubble],
    user_index: int,
    config: MatchConfig,
) -> list[str]:
    parts = []
    for bubble in session[user_index + 1:]:
        if bubble.role is Role.USER:
            break
        if is_prompt_echo(prompt_text, bubble.text, config):
            logger.debug("Skipping assistant bubble that repeats the prompt")
            continue
        parts.append(bubble.text)
    return parts


def find_bubble_response(
    prompt: Prompt,
    bubble_sessions: dict[str, list[Bubble]],
    lenient: bool = False,
    config: MatchConfig = DEFAULT_CONFIG,
) -> str | None:
    """Find the assistant text that followed the user bubble matching ``prompt``.

    Sessions are examined independently and in order; the first session
    whose matching user bubble is followed by assistant text wins.
    """
    for session_id, session in bubble_sessions.items():
        user_index = next(
            (
                i for i, bubble in enumerate(session)
                if bubble.role is Role.USER
                and texts_match(prompt.text, bubble.text, lenient=lenient, config=config)
            ),
            None,
        )
        if user_index is None:
            continue
        parts = _collect_assistant_parts(prompt.text, session, user_index, config)
        if parts:
            logger.debug(
                "Prompt #%d matched user bubble %d in session %s",
                prompt.raw_index, user_index, session_id[:8],
            )
            return "\n\n".join(parts)
    return None


def find_bubble_response_by_time(
    prompt: Prompt,
    bubble_sessions: dict[str, list[Bubble]],
    config: MatchConfig = DEFAULT_CONFIG,
) -> str | None:
    """Fall back to the user bubble created closest to the prompt's time.

    Only user bubbles within ``timestamp_window_ms`` of the prompt qualify.
    """
    if not prompt.timestamp_ms or prompt.timestamp_ms <= 0:
        return None

    best_response = None
    best_diff = None
    for session in bubble_sessions.values():
        candidates = [
            (abs(bubble.created_at_ms - prompt.timestamp_ms), i)
            for i, bubble in enumerate(session)
            if bubble.role is Role.USER and bubble.created_at_ms is not None
        ]
        if not candidates:
            continue
        diff, user_index = min(candidates)
        if diff >= config.timestamp_window_ms:
            continue
        parts = _collect_assistant_parts(prompt.text, session, user_index, config)
        if parts and (best_diff is None or diff < best_diff):
            best_response = "\n\n".join(parts)
            best_diff = diff

    if best_response is not None:
        logger.debug("Prompt #%d matched by time (%d ms apart)", prompt.raw_index, best_diff)
    return best_response


def match_generation(prompt: Prompt, generations: list[Generation]) -> Generation | None:
    """Pick the generation closest in time to ``prompt``.

    When no generation has a usable timestamp (or the prompt has none), fall
    back to the generation at the prompt's absolute index. That assumes
    prompts and generations were recorded in the same order, which the
    host does not guarantee.
    """
    best = None
    best_diff = None
    if prompt.timestamp_ms and prompt.timestamp_ms > 0:
        for generation in generations:
            if not generation.timestamp_ms or generation.timestamp_ms <= 0:
                continue
            diff = abs(generation.timestamp_ms - prompt.timestamp_ms)
            if best_diff is None or diff < best_diff:
                best = generation
                best_diff = diff

    if best is None and 0 <= prompt.raw_index < len(generations):
        best = generations[prompt.raw_index]
    return best


def select_response(
    prompt: Prompt,
    bubble_text: str | None,
    generation_text: str | None,
    config: MatchConfig = DEFAULT_CONFIG,
) -> str | None:
    """Validate both candidates, prefer the longer, and validate the winner."""
    if bubble_text and is_prompt_echo(prompt.text, bubble_text, config):
        logger.debug("Rejected bubble response for prompt #%d: repeats the prompt", prompt.raw_index)
        bubble_text = None
    if generation_text and is_prompt_echo(prompt.text, generation_text, config):
        logger.debug("Rejected generation for prompt #%d: repeats the prompt", prompt.raw_index)
        generation_text = None

    if bubble_text and generation_text:
        chosen = bubble_text if len(bubble_text) > len(generation_text) else generation_text
    else:
        chosen = bubble_text or generation_text

    # Checked again on the winner; both candidates may come from polluted data.
    if not chosen or is_prompt_echo(prompt.text, chosen, config):
        return None
    return chosen


def match_turn(
    prompt: Prompt,
    bubble_sessions: dict[str, list[Bubble]],
    generations: list[Generation],
    config: MatchConfig = DEFAULT_CONFIG,
) -> MatchedTurn:
    """Run the full matching cascade for one prompt."""
    bubble_text = (
        find_bubble_response(prompt, bubble_sessions, lenient=False, config=config)
        or find_bubble_response(prompt, bubble_sessions, lenient=True, config=config)
        or find_bubble_response_by_time(prompt, bubble_sessions, config=config)
    )

    generation = match_generation(prompt, generations)
    generation_text = generation.text if generation else None

    response = select_response(prompt, bubble_text, generation_text, config)
    if response is None:
        return MatchedTurn(prompt=prompt)

    source = "bubble" if response == bubble_text else "generation"
    timestamp = None
    if source == "generation" and generation.timestamp_ms:
        timestamp = generation.timestamp_ms
    elif prompt.timestamp_ms and prompt.timestamp_ms > 0:
        timestamp = prompt.timestamp_ms
    return MatchedTurn(
        prompt=prompt,
        response=response,
        response_timestamp_ms=timestamp,
        source=source,
    )


def _has_assistant_after(session: list[Bubble], user_index: int) -> bool:
    for bubble in session[user_index + 1:]:
        if bubble.role is Role.USER:
            return False
        return True
    return False


def group_prompts_by_sessions(
    prompts: list[Prompt],
    bubble_sessions: dict[str, list[Bubble]],
    config: MatchConfig = DEFAULT_CONFIG,
) -> list[MatchedSession]:
    """Group prompts by the bubble conversation they were typed into.

    Each user bubble claims the first prompt not yet claimed that strictly
    matches it. Prompts nobody claimed end up in a trailing "unmatched"
    session. Without any bubble sessions there is nothing to group by and
    the result is empty.
    """
    if not bubble_sessions:
        return []

    sessions: list[MatchedSession] = []
    claimed: set[int] = set()

    for session_id, bubbles in bubble_sessions.items():
        matched = MatchedSession(
            session_id=session_id,
            has_bubble_backed_responses=any(b.role is Role.ASSISTANT for b in bubbles),
        )
        for bubble in bubbles:
            if bubble.role is not Role.USER:
                continue
            for position, prompt in enumerate(prompts):
                if position in claimed:
                    continue
                if texts_match(prompt.text, bubble.text, lenient=False, config=config):
                    matched.prompts.append(prompt)
                    claimed.add(position)
                    break
        if matched.prompts:
            matched.prompts.sort(key=lambda p: p.raw_index)
            sessions.append(matched)
            logger.debug(
                "Session %s claimed %d prompts", session_id[:8], len(matched.prompts)
            )

    leftovers = [p for position, p in enumerate(prompts) if position not in claimed]
    if leftovers:
        with_responses = 0
        for prompt in leftovers:
            for bubbles in bubble_sessions.values():
                user_index = next(
                    (
                        i for i, bubble in enumerate(bubbles)
                        if bubble.role is Role.USER
                        and texts_match(prompt.text, bubble.text, lenient=True, config=config)
                    ),
                    None,
                )
                if user_index is not None:
                    if _has_assistant_after(bubbles, user_index):
                        with_responses += 1
                    break
        sessions.append(MatchedSession(
            session_id=UNMATCHED_SESSION_ID,
            prompts=leftovers,
            has_bubble_backed_responses=with_responses > 0,
        ))

    logger.info(
        "Grouped %d prompts into %d sessions (%d unmatched)",
        len(prompts), len(sessions), len(leftovers),
    )
    return sessions
