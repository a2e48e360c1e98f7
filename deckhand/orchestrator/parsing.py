"""
Tool-call parsing for text-only providers.

The AI emits calls as JSON inside fenced blocks or tags:

    ```tool_call
    {"name": "create_vessel", "arguments": {"name": "Sea Breeze"}}
    ```

    <tool_call>{"name": "update_profile", "arguments": {...}}</tool_call>

Malformed JSON and placeholder-only calls (copied templates full of "...")
are treated as no call. `attempted` tells the caller the text tried tool
syntax so it can ask for a corrected call.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

_FENCED_RE = re.compile(r"```(?:tool_calls?|json)\s*\n?(.*?)```", re.DOTALL | re.IGNORECASE)
_TAGGED_RE = re.compile(r"<tool_call>\s*(.*?)\s*</tool_call>", re.DOTALL | re.IGNORECASE)
# Signals that the model meant to call something, even if nothing parsed
_ATTEMPT_RE = re.compile(r"```tool_call|<tool_call|\"arguments\"\s*:", re.IGNORECASE)
_PLACEHOLDERS = {"...", "…", "{...}", "[...]", "<...>"}


@dataclass
class ToolCall:
    name: str
    arguments: dict = field(default_factory=dict)


@dataclass
class ParseResult:
    calls: list[ToolCall]
    content: str       # text with tool blocks removed, safe to show the user
    attempted: bool    # tool syntax was present


def _is_placeholder(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip() in _PLACEHOLDERS
    if isinstance(value, list):
        return bool(value) and all(_is_placeholder(v) for v in value)
    if isinstance(value, dict):
        return bool(value) and all(_is_placeholder(v) for v in value.values())
    return False


def _to_call(raw: str):
    try:
        data = json.loads(raw.strip())
    except json.JSONDecodeError:
        if "{...}" in raw or "..." in raw:
            logger.info("Ignoring placeholder tool block")
        else:
            logger.info("Malformed tool block: %s", raw[:200])
        return None

    if not isinstance(data, dict) or not isinstance(data.get("name"), str) or not data["name"]:
        return None

    args = data.get("arguments", {})
    if isinstance(args, str):
        try:
            args = json.loads(args)
        except json.JSONDecodeError:
            return None
    if not isinstance(args, dict) or _is_placeholder(args):
        logger.info("Ignoring placeholder call to %s", data["name"])
        return None
    return ToolCall(name=data["name"], arguments=args)


def parse_tool_calls(text: str) -> ParseResult:
    text = text or ""
    calls: list[ToolCall] = []
    content = text

    for regex in (_FENCED_RE, _TAGGED_RE):
        for match in regex.finditer(text):
            call = _to_call(match.group(1))
            if call is not None:
                calls.append(call)
            # Tool blocks are never shown to the user, parsed or not
            content = content.replace(match.group(0), "")

    attempted = bool(calls) or bool(_ATTEMPT_RE.search(text))
    content = re.sub(r"\n{3,}", "\n\n", content).strip()
    return ParseResult(calls=calls, content=content, attempted=attempted)


def strip_tool_blocks(text: str) -> str:
    return parse_tool_calls(text).content
