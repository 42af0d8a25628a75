"""
Cheap lexical checks: stop words, word spacing and invisible characters.

None of these does any I/O; they are fast enough to run on every message.
"""

from __future__ import annotations

import re
import unicodedata

from modguard.datatypes.check_config import CheckConfig
from modguard.datatypes.detection_datatypes import CheckName, CheckResult, ContentContext
from modguard.detection.checks.base import Check

WORD_RE = re.compile(r"\w+", re.UNICODE)
URL_RE = re.compile(r"https?://\S+", re.IGNORECASE)
MENTION_RE = re.compile(r"<[@#][!&]?\d+>|@\w+")
# Four or more single letters separated by whitespace
LETTER_SPACING_RE = re.compile(r"\b[a-zA-Z]\s[a-zA-Z]\s[a-zA-Z]\s[a-zA-Z]\b")

# Zero-width and formatting characters commonly used to dodge word filters
INVISIBLE_CHARS = frozenset({
    "\u200b", "\u200c", "\u200d", "\u200e", "\u200f",
    "\u2060", "\u2061", "\u2062", "\u2063", "\u2064",
    "\ufeff", "\u00ad", "\u180e", "\u034f",
})


def normalize(text: str) -> str:
    """Casefold and strip accents so lookalike spellings compare equal."""
    decomposed = unicodedata.normalize("NFKD", text)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch)).casefold()


class StopWordsCheck(Check):
    """Flags messages containing configured stop words or phrases."""

    name = CheckName.STOP_WORDS

    async def evaluate(self, context: ContentContext, config: CheckConfig) -> CheckResult:
        params = config.params
        if not params.words or not context.text:
            return CheckResult.clean(self.name, details="no stop words configured" if not params.words else "")

        haystack = normalize(context.text)
        tokens = set(WORD_RE.findall(haystack))
        hits = []
        for word in params.words:
            needle = normalize(word).strip()
            if not needle:
                continue
            # Phrases match as substrings, single words as whole tokens
            if (" " in needle and needle in haystack) or needle in tokens:
                hits.append(word)

        if not hits:
            return CheckResult.clean(self.name)
        confidence = min(100, params.confidence_per_hit * len(hits))
        return CheckResult.spam(self.name, confidence, details=f"matched: {', '.join(sorted(hits))}")


class SpacingCheck(Check):
    """Flags text broken into suspiciously short fragments ("f r e e  c o i n s").

    A message is suspicious when single letters are spaced out, or when short
    words dominate and spaces make up a large share of the characters. Short
    words alone are normal chat ("is it ok for me to go now?").
    """

    name = CheckName.SPACING

    async def evaluate(self, context: ContentContext, config: CheckConfig) -> CheckResult:
        params = config.params
        text = (context.text or "").strip()
        if len(text) < params.min_length:
            return CheckResult.clean(self.name, details="too short for spacing analysis")

        stripped = MENTION_RE.sub("", URL_RE.sub("", text))
        words = [w for w in stripped.split() if any(ch.isalnum() for ch in w)]
        if len(words) < params.min_words:
            return CheckResult.clean(self.name, details=f"{len(words)} words")

        short_ratio = sum(1 for w in words if len(w) <= params.short_word_length) / len(words)
        space_ratio = text.count(" ") / len(text)
        letter_spacing = LETTER_SPACING_RE.search(stripped) is not None
        details = f"short-word ratio {short_ratio:.2f}, space ratio {space_ratio:.2f}"

        crowded = short_ratio >= params.suspicious_ratio and space_ratio >= params.space_ratio
        if not (crowded or letter_spacing):
            return CheckResult.clean(self.name, details=details)

        confidence = 0
        if space_ratio >= params.space_ratio:
            confidence += 40
        if short_ratio >= 0.8:
            confidence += 35
        elif short_ratio >= params.suspicious_ratio:
            confidence += 20
        if letter_spacing:
            details += ", letters spaced out"
            # Pattern-only hits count half
            confidence += 40 if confidence else 20
        return CheckResult.spam(self.name, min(100, confidence), details=details)


class InvisibleCharsCheck(Check):
    """Flags zero-width and other invisible formatting characters."""

    name = CheckName.INVISIBLE_CHARS

    async def evaluate(self, context: ContentContext, config: CheckConfig) -> CheckResult:
        text = context.text or ""
        count = sum(1 for ch in text if ch in INVISIBLE_CHARS or unicodedata.category(ch) == "Cf")
        if count < config.params.min_count:
            return CheckResult.clean(self.name)
        return CheckResult.spam(self.name, 100, details=f"{count} invisible characters")
