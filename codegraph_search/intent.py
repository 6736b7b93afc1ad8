"""Query intent classification.

Deterministic keyword rules pick the intent type.  An optional external hint
(e.g. a language model) may raise the confidence of that type but can never
change it, so ranking stays reproducible.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Callable, FrozenSet, List, Optional, Sequence, Tuple

from .models import SearchContext, SearchIntent
from .patterns import NAMING_CONVENTIONS
from .text_analysis import query_keywords

logger = logging.getLogger(__name__)

INTENT_TYPES = (
    "find_similar",
    "find_dependencies",
    "find_usage",
    "find_pattern",
    "impact_analysis",
    "architecture_search",
)

DEFAULT_INTENT = "find_similar"
DEFAULT_CONFIDENCE = 0.5
BASE_CONFIDENCE = 0.7
CONFIDENCE_STEP = 0.1
MAX_CONFIDENCE = 0.95

IntentHint = Callable[[str, SearchContext], Optional[Tuple[str, float]]]

_WORD_RE = re.compile(r"[a-z_]+")


@dataclass(frozen=True)
class IntentRule:
    intent: str
    terms: FrozenSet[str]

    def matches(self, words: Sequence[str]) -> int:
        return len(self.terms.intersection(words))


DEFAULT_RULES: Tuple[IntentRule, ...] = (
    IntentRule("impact_analysis", frozenset({
        "impact", "affect", "affects", "affected", "break", "breaks", "change",
        "changes", "changing", "risk", "ripple",
    })),
    IntentRule("find_dependencies", frozenset({
        "depend", "depends", "dependency", "dependencies", "extends", "implements",
        "inherit", "inherits", "inheritance", "imports", "requires", "subclass",
    })),
    IntentRule("find_usage", frozenset({
        "used", "uses", "usage", "usages", "call", "calls", "called", "caller", "callers",
        "reference", "references", "referenced", "invoked",
    })),
    IntentRule("find_pattern", frozenset({
        "pattern", "patterns", "design", "idiom", "idioms",
    })),
    IntentRule("architecture_search", frozenset({
        "architecture", "architectural", "layer", "layers", "component",
        "components", "structure", "overview", "subsystem",
    })),
)


class IntentClassifier:
    """Ordered rule list; the first rule with any matching term wins."""

    def __init__(
        self,
        rules: Sequence[IntentRule] = DEFAULT_RULES,
        hint: Optional[IntentHint] = None,
    ) -> None:
        self.rules = tuple(rules)
        self.hint = hint

    def classify(self, query: str, context: Optional[SearchContext] = None) -> SearchIntent:
        words = _WORD_RE.findall(query.lower())
        intent_type, confidence = DEFAULT_INTENT, DEFAULT_CONFIDENCE
        for rule in self.rules:
            matched = rule.matches(words)
            if matched:
                intent_type = rule.intent
                confidence = min(MAX_CONFIDENCE, BASE_CONFIDENCE + CONFIDENCE_STEP * matched)
                break

        if self.hint is not None:
            confidence = self._apply_hint(query, context or SearchContext(), intent_type, confidence)

        return SearchIntent(
            type=intent_type,
            confidence=confidence,
            keywords=query_keywords(query),
            patterns=[tag for tag in NAMING_CONVENTIONS if tag in words]
            + (["polymorphic_interface"] if "polymorphic" in words else []),
        )

    def _apply_hint(
        self, query: str, context: SearchContext, intent_type: str, confidence: float,
    ) -> float:
        try:
            suggestion = self.hint(query, context) if self.hint else None
        except Exception as exc:
            logger.warning("Intent hint failed, keeping rule-based intent: %s", exc)
            return confidence
        if not suggestion:
            return confidence
        hinted_type, hinted_confidence = suggestion
        if hinted_type != intent_type:
            logger.debug("Ignoring intent hint %s (rules chose %s)", hinted_type, intent_type)
            return confidence
        return max(confidence, min(MAX_CONFIDENCE, float(hinted_confidence)))


_DEFAULT_CLASSIFIER = IntentClassifier()


def classify(query: str, context: Optional[SearchContext] = None) -> SearchIntent:
    return _DEFAULT_CLASSIFIER.classify(query, context)


def intent_types() -> List[str]:
    return list(INTENT_TYPES)
