"""Answer parsing for lettered interview questions.

Participants answer in free text ("B first, then D", "I'd go with C",
"option a", or by quoting an option). ``parse_selection`` tries the
patterns below in order of confidence and returns the first match whose
letters exist on the question.

Letters are matched in upper case only so that ordinary words ("a",
"like", "be") are never read as answers. A message that is nothing but a
single letter is accepted in either case.
"""

import re
from dataclasses import dataclass
from typing import List, Optional, Tuple

from meridian.catalog.loader import Question

_L = r"([A-E])"

# (pattern, reversed, confidence): reversed 表示第一个捕获组是 second
_RANKED_PATTERNS = [
    (re.compile(rf"\b{_L}\b[\s,:-]*(?i:first|most)\b.*?\b{_L}\b[\s,:-]*(?i:second|next)\b", re.DOTALL), False, 0.95),
    (re.compile(rf"(?i:most|first)\b.*?\b{_L}\b.*?(?i:second|next|then)\b.*?\b{_L}\b", re.DOTALL), False, 0.95),
    (re.compile(rf"(?i:second)\b.*?\b{_L}\b.*?(?i:most|first)\b.*?\b{_L}\b", re.DOTALL), True, 0.9),
]
_PAIR = re.compile(rf"\b{_L}\s*(?:(?i:and)|&|,|(?i:then))\s*{_L}\b")
_TRAILING = re.compile(rf"\b{_L}[.!)]?\s*$")
_ONLY_LETTER = re.compile(r"^\s*\(?([A-Ea-e])[.)!]?\s*$")
_LEADING = re.compile(rf"^\s*\(?{_L}\b")
_VERB = re.compile(rf"(?i:choose|chose|pick|select|go with|going with|say|think)\s+(?:(?i:option)\s+)?\(?{_L}\b")
_NOUN = re.compile(rf"(?i:option|answer|choice)\s*[:#]?\s*\(?{_L}\b")

SHORT_MESSAGE = 20
TEXT_MATCH_CHARS = 25


@dataclass(frozen=True)
class Selection:
    """A parsed answer. ``second`` is only set for ranked questions."""

    most: Optional[str] = None
    second: Optional[str] = None
    confidence: float = 0.0

    @property
    def detected(self) -> bool:
        return self.most is not None


NO_SELECTION = Selection()


def _valid(question: Question, *letters: Optional[str]) -> bool:
    return all(letter is None or question.option(letter) is not None for letter in letters)


def _build(question: Question, most: str, second: Optional[str], confidence: float) -> Selection:
    most = most.upper()
    second = second.upper() if second else None
    if not question.is_ranked or second == most:
        second = None
    return Selection(most=most, second=second, confidence=confidence)


def _match_option_text(message: str, question: Question) -> List[Tuple[int, str]]:
    lowered = message.lower()
    hits: List[Tuple[int, str]] = []
    for opt in question.options:
        text = opt.text.strip().lower()
        probe = text[:min(TEXT_MATCH_CHARS, len(text) // 2)]
        if not probe.strip():
            continue
        pos = lowered.find(probe)
        if pos >= 0:
            hits.append((pos, opt.letter))
    return sorted(hits)


def parse_selection(message: str, question: Question) -> Selection:
    """Parse a free-text answer into the chosen option letter(s)."""
    if not message or not message.strip():
        return NO_SELECTION
    text = message.strip()

    for pattern, reverse, confidence in _RANKED_PATTERNS:
        m = pattern.search(text)
        if m:
            first, other = m.group(1), m.group(2)
            most, second = (other, first) if reverse else (first, other)
            if _valid(question, most, second):
                return _build(question, most, second, confidence)

    m = _PAIR.search(text)
    if m and _valid(question, m.group(1), m.group(2)):
        return _build(question, m.group(1), m.group(2), 0.85)

    m = _ONLY_LETTER.match(text)
    if m and _valid(question, m.group(1).upper()):
        return _build(question, m.group(1), None, 0.9)

    m = _TRAILING.search(text)
    if m and _valid(question, m.group(1)):
        return _build(question, m.group(1), None, 0.8)

    if len(text) < SHORT_MESSAGE:
        m = _LEADING.match(text)
        if m and _valid(question, m.group(1)):
            return _build(question, m.group(1), None, 0.75)

    for pattern in (_VERB, _NOUN):
        m = pattern.search(text)
        if m and _valid(question, m.group(1)):
            return _build(question, m.group(1), None, 0.85)

    hits = _match_option_text(text, question)
    if hits:
        second = hits[1][1] if len(hits) > 1 else None
        return _build(question, hits[0][1], second, 0.6)

    return NO_SELECTION
