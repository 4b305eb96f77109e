"""History transforms used by ChatSession.

All functions are pure: they never mutate the turns they receive.

- Validity: whether a turn is fit to be sent back to the model
- Thought stripping: removes reasoning before re-submission
- Curation: keeps only valid runs of model turns
- Unpaired-call stripping: removes function calls that never got a response
"""

import logging
from dataclasses import replace

from agentic_chat.domain.models.content import FunctionCallPart, Part, Role, TextPart, ThoughtPart, Turn

logger = logging.getLogger(__name__)

THINK_OPEN_TAG = "<think>"
THINK_CLOSE_TAG = "</think>"


def is_valid_content(turn: Turn) -> bool:
    """A turn is valid when it has parts, none of them empty, and no empty visible text."""
    if not turn.parts:
        return False
    for part in turn.parts:
        if part.is_empty:
            return False
        if isinstance(part, TextPart) and part.text == "":
            return False
    return True


def is_persisted_thought(part: Part) -> bool:
    """Whether a text part is a thought rendered by ``thought_to_text``.

    Only the exact persisted form matches; visible text that merely mentions
    ``<think>`` (e.g. inline reasoning from the model) is kept.
    """
    return isinstance(part, TextPart) and part.text.startswith(f"{THINK_OPEN_TAG}\n") and part.text.endswith(f"\n{THINK_CLOSE_TAG}\n\n")


def strip_thoughts(turn: Turn) -> Turn:
    """Return a copy of the turn without thought parts or persisted thoughts."""
    parts = [p for p in turn.parts if not isinstance(p, ThoughtPart) and not is_persisted_thought(p)]
    return Turn(role=turn.role, parts=parts)


def thought_to_text(part: ThoughtPart) -> TextPart:
    """Render a thought as delimited text so it survives persistence."""
    return TextPart(text=f"{THINK_OPEN_TAG}\n{part.text}\n{THINK_CLOSE_TAG}\n\n")


def consolidate_text_parts(parts: list[Part]) -> list[Part]:
    """Merge consecutive visible text parts into one."""
    consolidated: list[Part] = []
    for part in parts:
        last = consolidated[-1] if consolidated else None
        if isinstance(last, TextPart) and last.text and isinstance(part, TextPart):
            consolidated[-1] = replace(last, text=last.text + part.text)
        else:
            consolidated.append(part)
    return consolidated


def extract_curated_history(history: list[Turn]) -> list[Turn]:
    """Keep user turns and only those runs of model turns that are entirely valid.

    A run is the sequence of consecutive model turns between two user turns. If
    any turn of a run fails validity after thought stripping, the whole run is
    dropped.
    """
    curated: list[Turn] = []
    index = 0
    while index < len(history):
        turn = history[index]
        if turn.role == Role.USER:
            curated.append(strip_thoughts(turn))
            index += 1
            continue

        run: list[Turn] = []
        run_is_valid = True
        while index < len(history) and history[index].role == Role.MODEL:
            stripped = strip_thoughts(history[index])
            run.append(stripped)
            if run_is_valid and not is_valid_content(stripped):
                run_is_valid = False
            index += 1

        if run_is_valid:
            curated.extend(run)
        else:
            logger.debug(f"Dropping {len(run)} model turn(s) from curated history: run contains an invalid turn")
    return curated


def remove_unpaired_tool_calls(history: list[Turn]) -> list[Turn]:
    """Drop function calls that have no response anywhere in the history.

    Calls in the last turn, if it is a model turn, are pending and kept. Turns
    left without any part are dropped.
    """
    call_ids: set[str] = set()
    response_ids: set[str] = set()
    for turn in history:
        call_ids.update(call.id for call in turn.function_calls if call.id)
        response_ids.update(response.id for response in turn.function_responses)

    pending_ids: set[str] = set()
    if history and history[-1].role == Role.MODEL:
        pending_ids = {call.id for call in history[-1].function_calls if call.id}

    unpaired_ids = call_ids - response_ids - pending_ids
    if unpaired_ids:
        logger.debug(f"Removing {len(unpaired_ids)} unpaired tool call(s): {sorted(unpaired_ids)}")

    cleaned: list[Turn] = []
    for turn in history:
        parts = [p for p in turn.parts if not (isinstance(p, FunctionCallPart) and p.id in unpaired_ids)]
        if parts:
            cleaned.append(Turn(role=turn.role, parts=parts))
    return cleaned


def strip_thought_signatures(turn: Turn) -> Turn:
    """Return a copy of the turn with every thought signature removed.

    Parts that carried nothing but a signature are dropped.
    """
    parts = [replace(p, thought_signature=None) for p in turn.parts if type(p) is not Part]
    return Turn(role=turn.role, parts=parts)
