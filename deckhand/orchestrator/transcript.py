"""
Immutable conversation transcript.

A Transcript is a tuple of Turn values. Appending returns a new transcript;
nothing is ever edited in place. Persisted as a JSON list on the session.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional

from ..services import llm


class TurnKind(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    TOOL_RESULT = "tool_result"
    DIRECTIVE = "directive"
    SYSTEM = "system"


@dataclass(frozen=True)
class Turn:
    kind: TurnKind
    content: str
    name: Optional[str] = None  # operation name, tool_result turns only

    def to_dict(self) -> dict:
        d = {"kind": self.kind.value, "content": self.content}
        if self.name:
            d["name"] = self.name
        return d

    @classmethod
    def from_dict(cls, data: dict) -> "Turn":
        return cls(
            kind=TurnKind(data.get("kind", "user")),
            content=data.get("content") or "",
            name=data.get("name"),
        )


@dataclass(frozen=True)
class Transcript:
    turns: tuple[Turn, ...] = ()

    def __len__(self) -> int:
        return len(self.turns)

    def __iter__(self):
        return iter(self.turns)

    def append(self, kind: TurnKind, content: str, name: Optional[str] = None) -> "Transcript":
        return Transcript(self.turns + (Turn(TurnKind(kind), content, name),))

    def extend(self, turns: Iterable[Turn]) -> "Transcript":
        return Transcript(self.turns + tuple(turns))

    def last(self, kind: TurnKind, before: Optional[int] = None) -> Optional[Turn]:
        """Last turn of a kind, optionally only among turns[:before]."""
        source = self.turns if before is None else self.turns[:before]
        for turn in reversed(source):
            if turn.kind == kind:
                return turn
        return None

    def to_list(self) -> list[dict]:
        return [t.to_dict() for t in self.turns]

    @classmethod
    def from_list(cls, data: Optional[list]) -> "Transcript":
        return cls(tuple(Turn.from_dict(d) for d in (data or []) if isinstance(d, dict)))


# ── Rendering ────────────────────────────────────────────────────────

_LABELS = {
    TurnKind.USER: "user",
    TurnKind.ASSISTANT: "assistant",
    TurnKind.TOOL_RESULT: "user",
    TurnKind.DIRECTIVE: "user",
    TurnKind.SYSTEM: "system",
}


def render_turn(turn: Turn) -> str:
    if turn.kind == TurnKind.TOOL_RESULT:
        return f"user: Tool results ({turn.name}):\n{turn.content}"
    if turn.kind == TurnKind.DIRECTIVE:
        return f"user: [SYSTEM: {turn.content}]"
    return f"{_LABELS[turn.kind]}: {turn.content}"


def trim_to_budget(transcript: Transcript, max_tokens: int) -> tuple[list[Turn], int]:
    """
    Keep the most recent turns that fit within the token budget.
    Returns (kept turns, number of dropped turns). Oldest are dropped first.
    """
    kept: list[Turn] = []
    total = 0
    for turn in reversed(transcript.turns):
        cost = llm.estimate_tokens(render_turn(turn)) + 4
        if kept and total + cost > max_tokens:
            break
        kept.append(turn)
        total += cost
    kept.reverse()
    return kept, len(transcript) - len(kept)
