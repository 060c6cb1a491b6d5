"""Preservation policy: which files an update may replace.

Rules are evaluated in a fixed priority order (preserved, then
review-required); anything unmatched is managed by the release.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum
from fnmatch import fnmatchcase

from claudekit.constants import (
    CONTRIBUTION_GUIDELINES,
    KIT_DIR,
    MEMORY_DIR,
    PAIN_POINTS_DIR,
    USER_CONFIG_FILE,
)
from claudekit.updater.models import normalize_relpath


class Classification(Enum):
    """Ownership class of a path inside the installation."""

    PRESERVED = "preserved"
    REVIEW_REQUIRED = "review_required"
    MANAGED = "managed"


# Lower value wins
_PRIORITY = {
    Classification.PRESERVED: 0,
    Classification.REVIEW_REQUIRED: 1,
    Classification.MANAGED: 2,
}


@dataclass(frozen=True)
class PreservationRule:
    """A path pattern mapped to a classification.

    ``pattern`` is an exact relative path, a directory prefix ending in
    ``/`` or an ``fnmatch`` glob. Globs match the whole path, so ``*``
    also crosses ``/``. Paths matching one of ``exclude`` (same syntax)
    fall through to the next rule.
    """

    pattern: str
    classification: Classification
    reason: str = ""
    exclude: tuple[str, ...] = ()

    def matches(self, path: str) -> bool:
        if not _match(self.pattern, path):
            return False
        return not any(_match(p, path) for p in self.exclude)


def _match(pattern: str, path: str) -> bool:
    if pattern.endswith("/"):
        return path.startswith(pattern)
    if any(ch in pattern for ch in "*?["):
        return fnmatchcase(path, pattern)
    return path == pattern


# Paths inside preserved directories that are still reviewed against the release
PRESERVED_EXCEPTIONS: dict[str, tuple[str, ...]] = {
    f"{MEMORY_DIR}/": (CONTRIBUTION_GUIDELINES,),
}

DEFAULT_PRESERVED: tuple[tuple[str, str], ...] = (
    (USER_CONFIG_FILE, "project configuration"),
    (f"{MEMORY_DIR}/", "user memory notes"),
    (f"{PAIN_POINTS_DIR}/", "pain-point log"),
    (f"{KIT_DIR}/settings.local.json", "local settings"),
)

DEFAULT_REVIEW: tuple[tuple[str, str], ...] = (
    (
        CONTRIBUTION_GUIDELINES,
        "template commonly customized per project",
    ),
    (f"{KIT_DIR}/settings.json", "shared settings may carry local edits"),
)


class PreservationPolicy:
    """Ordered rule evaluator classifying installation paths."""

    def __init__(self, rules: Iterable[PreservationRule] = ()) -> None:
        indexed = list(enumerate(rules))
        # Stable: priority class first, then declaration order
        indexed.sort(key=lambda pair: (_PRIORITY[pair[1].classification], pair[0]))
        self._rules: tuple[PreservationRule, ...] = tuple(rule for _, rule in indexed)

    @property
    def rules(self) -> tuple[PreservationRule, ...]:
        return self._rules

    def explain(self, path: str) -> PreservationRule | None:
        """Return the rule deciding ``path``, or None when it is managed by default."""
        normalized = normalize_relpath(path)
        for rule in self._rules:
            if rule.classification is Classification.MANAGED:
                continue
            if rule.matches(normalized):
                return rule
        return None

    def classify(self, path: str) -> Classification:
        rule = self.explain(path)
        return rule.classification if rule else Classification.MANAGED

    def is_preserved(self, path: str) -> bool:
        return self.classify(path) is Classification.PRESERVED

    @classmethod
    def default(
        cls,
        extra_preserved: Iterable[str] = (),
        extra_review: Iterable[str] = (),
    ) -> PreservationPolicy:
        """Build the stock ClaudeKit policy plus configured extra patterns."""
        rules = [
            PreservationRule(
                p, Classification.PRESERVED, reason, exclude=PRESERVED_EXCEPTIONS.get(p, ())
            )
            for p, reason in DEFAULT_PRESERVED
        ]
        rules += [
            PreservationRule(p, Classification.PRESERVED, "configured as user-owned")
            for p in extra_preserved
        ]
        rules += [
            PreservationRule(p, Classification.REVIEW_REQUIRED, reason)
            for p, reason in DEFAULT_REVIEW
        ]
        rules += [
            PreservationRule(p, Classification.REVIEW_REQUIRED, "configured for review")
            for p in extra_review
        ]
        return cls(rules)
