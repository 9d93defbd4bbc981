"""Conversion between stored messages and provider message history."""

from __future__ import annotations

import json
from typing import Any

from megabot.persistence.models import Message, MessageRole

DEFAULT_HISTORY_CHARS = 400_000


def safe_parse_args(raw: str | None) -> dict[str, Any]:
    """Parse tool-call arguments. Empty or invalid JSON yields ``{}``."""
    if not raw or not raw.strip():
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        return {}
    return parsed if isinstance(parsed, dict) else {}


def _char_len(message: dict[str, Any]) -> int:
    content = message["content"]
    if isinstance(content, str):
        return len(content)
    return len(json.dumps(content))


def truncate_history(
    messages: list[dict[str, Any]], max_chars: int = DEFAULT_HISTORY_CHARS
) -> list[dict[str, Any]]:
    """Keep the most recent messages that fit in ``max_chars``.

    The newest message is always kept. Leading messages are dropped until
    the history starts with a user message.
    """
    if sum(_char_len(m) for m in messages) <= max_chars:
        kept = list(messages)
    else:
        kept = []
        chars = 0
        for message in reversed(messages):
            size = _char_len(message)
            if chars + size > max_chars and kept:
                break
            chars += size
            kept.insert(0, message)

    while kept and kept[0]["role"] != MessageRole.USER.value:
        kept.pop(0)
    # A leading tool-result turn has lost its tool_use partner
    while kept and _is_tool_result_turn(kept[0]):
        kept.pop(0)
        while kept and kept[0]["role"] != MessageRole.USER.value:
            kept.pop(0)
    return kept


def _is_tool_result_turn(message: dict[str, Any]) -> bool:
    content = message["content"]
    return isinstance(content, list) and any(b.get("type") == "tool_result" for b in content)


def messages_to_history(rows: list[Message]) -> list[dict[str, Any]]:
    """Replay stored rows as provider messages.

    Rows with blocks are sent as block content; tool rows are sent with the
    user role. System rows (notifications) and plain tool rows are skipped.
    """
    history: list[dict[str, Any]] = []
    for row in rows:
        if row.role == MessageRole.SYSTEM:
            continue
        if row.blocks:
            role = MessageRole.USER if row.role == MessageRole.TOOL else row.role
            history.append({"role": role.value, "content": [b.to_dict() for b in row.blocks]})
        elif row.role != MessageRole.TOOL:
            history.append({"role": row.role.value, "content": row.content})
    return history
