"""Queue announcement classifier.

Matches the extracted text of a message against an ordered list of named
rules. The rule set and skip strings travel in a `ClassifierConfig` that the
caller passes in on every call, so swapping in a new config is all a reload
needs.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Iterable, Optional

NONE = "NONE"
PREVIEW_CHARS = 100


@dataclass(frozen=True)
class QueueRule:
    name: str
    patterns: tuple[str, ...] = ()
    substrings: tuple[str, ...] = ()
    url: Optional[str] = None
    _compiled: tuple = field(default=(), init=False, repr=False, compare=False)

    def __post_init__(self):
        if not self.name or self.name == NONE:
            raise ValueError(f"Invalid rule name: {self.name!r}")
        if not self.patterns and not self.substrings:
            raise ValueError(f"Rule {self.name} needs at least one pattern or substring.")
        try:
            compiled = tuple(re.compile(pattern, re.IGNORECASE) for pattern in self.patterns)
        except re.error as exc:
            raise ValueError(f"Rule {self.name} has an invalid pattern: {exc}") from exc
        object.__setattr__(self, "patterns", tuple(self.patterns))
        object.__setattr__(self, "substrings", tuple(s.lower() for s in self.substrings))
        object.__setattr__(self, "_compiled", compiled)

    def matches(self, lowered_text: str) -> bool:
        if any(pattern.search(lowered_text) for pattern in self._compiled):
            return True
        return any(substring in lowered_text for substring in self.substrings)

    @classmethod
    def from_dict(cls, data: dict) -> "QueueRule":
        if not isinstance(data, dict):
            raise ValueError("Each rule must be a JSON object.")
        patterns = data.get("patterns") or []
        substrings = data.get("substrings") or []
        if isinstance(patterns, str):
            patterns = [patterns]
        if isinstance(substrings, str):
            substrings = [substrings]
        return cls(
            name=str(data.get("name") or "").strip().upper(),
            patterns=tuple(str(p) for p in patterns),
            substrings=tuple(str(s) for s in substrings),
            url=data.get("url") or None,
        )

    def to_dict(self) -> dict:
        entry = {"name": self.name}
        if self.patterns:
            entry["patterns"] = list(self.patterns)
        if self.substrings:
            entry["substrings"] = list(self.substrings)
        if self.url:
            entry["url"] = self.url
        return entry


DEFAULT_RULES = (
    QueueRule(
        name="POKEMON_CENTER",
        patterns=(r"pok[eé]mon center\s*queue", r"queue.*pok[eé]mon center"),
        url="https://pokemoncenter.com",
    ),
    QueueRule(
        name="COSTCO",
        patterns=(r"(queue\s*.*?\s*costco)|(costco\s*.*?\s*queue)",),
    ),
    QueueRule(
        name="TARGET",
        substrings=("mavely.app.link", "target.com/p"),
    ),
)


@dataclass(frozen=True)
class ClassifierConfig:
    rules: tuple[QueueRule, ...] = DEFAULT_RULES
    skip_strings: tuple[str, ...] = ()

    def __post_init__(self):
        names = [rule.name for rule in self.rules]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ValueError(f"Duplicate rule names: {', '.join(duplicates)}")
        object.__setattr__(self, "rules", tuple(self.rules))
        object.__setattr__(
            self,
            "skip_strings",
            tuple(s.lower() for s in self.skip_strings if s),
        )

    def rule_named(self, name: str) -> Optional[QueueRule]:
        return next((rule for rule in self.rules if rule.name == name), None)


@dataclass(frozen=True)
class ScanResult:
    classification: str = NONE
    matched_text: str = ""
    url: Optional[str] = None

    @property
    def found(self) -> bool:
        return self.classification != NONE


NO_MATCH = ScanResult()


def is_skipped(lowered_text: str, config: ClassifierConfig) -> bool:
    return any(skip in lowered_text for skip in config.skip_strings)


def classify(text: Optional[str], config: ClassifierConfig) -> ScanResult:
    """Classify one block of text. Skip strings beat every rule."""
    if not text:
        return NO_MATCH
    lowered = text.lower()
    if is_skipped(lowered, config):
        return NO_MATCH
    for rule in config.rules:
        if rule.matches(lowered):
            return ScanResult(rule.name, lowered[:PREVIEW_CHARS], rule.url)
    return NO_MATCH


def classify_texts(texts: Iterable[Optional[str]], config: ClassifierConfig) -> ScanResult:
    """Classify the text blocks of one message and return the first hit."""
    for text in texts or ():
        result = classify(text, config)
        if result.found:
            return result
    return NO_MATCH
