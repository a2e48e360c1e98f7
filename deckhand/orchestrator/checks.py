"""
Text heuristics used by the orchestrator loop.

  is_affirmation      the user confirmed ("yes", "looks good", ...)
  looks_like_summary  an assistant turn presented a resource for confirmation
  claimed_operations  an assistant turn claims work was done
"""

import re
from typing import Optional

AFFIRMATIVE_PHRASES = frozenset({
    "yes", "yeah", "yep", "yup", "y", "ok", "okay", "sure",
    "confirm", "confirmed", "i confirm",
    "looks good", "looks great", "sounds good", "perfect",
    "correct", "that's correct", "thats correct", "that is correct", "right",
    "go ahead", "do it", "please do", "proceed",
    "save", "save it", "create it", "yes please", "yes, please",
})

_AFFIRMATIVE_WORDS_RE = re.compile(
    r"\b(yes|yeah|yep|ok|okay|confirm(ed)?|correct|go ahead|looks good|sounds good|save it|create it)\b"
)
_NEGATION_RE = re.compile(r"\b(no|not|don't|dont|wait|change|wrong|instead)\b")
# "yes, no changes": a "no" right after an affirmative word confirms
_AFFIRMED_NO_RE = re.compile(r"\b(yes|yeah|yep|ok|okay|correct|perfect)\b[,\s]+no\b")


def is_affirmation(message: str) -> bool:
    text = (message or "").strip().lower()
    text = re.sub(r"[.!?\s]+$", "", text)
    if not text:
        return False
    if text in AFFIRMATIVE_PHRASES:
        return True
    # Short confirmations with extra words ("yes, that all looks good")
    if len(text) < 60 and _AFFIRMATIVE_WORDS_RE.search(text):
        return not _NEGATION_RE.search(_AFFIRMED_NO_RE.sub(r"\1", text))
    return False


# ── Summaries ────────────────────────────────────────────────────────

_FIELD_LINE_RE = re.compile(
    r"^\s*[-*•]?\s*\**(name|full name|type|make|model|make/model|length|capacity|home port|"
    r"bio|experience|experience level|skills|certifications|risk level|"
    r"start|end|from|to|waypoints|dates?|route)\**\s*:\s*\S+",
    re.IGNORECASE | re.MULTILINE,
)
_SUMMARY_PHRASE_RE = re.compile(
    r"(summary|here('s| is) (your|the)|does this look (right|correct|good)|shall i (save|create)|"
    r"should i (save|create)|please confirm|confirm (the|these|this))",
    re.IGNORECASE,
)


def looks_like_summary(text: Optional[str]) -> bool:
    if not text:
        return False
    if "tool_call" in text:
        return False
    fields = len(_FIELD_LINE_RE.findall(text))
    return fields >= 2 or (fields >= 1 and bool(_SUMMARY_PHRASE_RE.search(text)))


# ── Completion claims ────────────────────────────────────────────────

_CLAIMS = {
    "update_profile": re.compile(
        r"(profile\b.{0,40}\b(has been|have been|was|is now|now)\s+(saved|created|updated|stored)|"
        r"(i've|i have|i)\s+(saved|created|updated)\s+your profile)",
        re.IGNORECASE,
    ),
    "create_vessel": re.compile(
        r"((boat|vessel)\b.{0,40}\b(has been|have been|was|is now)\s+(saved|created|added)|"
        r"(i've|i have|i)\s+(saved|created|added)\s+(your|the)\s+(boat|vessel))",
        re.IGNORECASE,
    ),
    "generate_route": re.compile(
        r"((journey|route)\b.{0,40}\b(has been|have been|was|is now)\s+(saved|created|generated)|"
        r"(i've|i have|i)\s+(saved|created|generated)\s+(your|the)\s+(journey|route))",
        re.IGNORECASE,
    ),
}


def claimed_operations(text: Optional[str]) -> set[str]:
    """Operations the text claims to have completed."""
    if not text:
        return set()
    return {name for name, pattern in _CLAIMS.items() if pattern.search(text)}
