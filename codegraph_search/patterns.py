"""Structural pattern tags for graph nodes.

A pattern rule is a named predicate over ``(graph, node_id)``.  The default
registry carries naming-convention rules plus a few structural ones; more
rules can be registered at runtime.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Dict, Iterable, List, Optional, Tuple

if TYPE_CHECKING:
    from .graph import CodeGraph

logger = logging.getLogger(__name__)

PatternPredicate = Callable[["CodeGraph", str], bool]

NAMING_CONVENTIONS: Dict[str, Tuple[str, ...]] = {
    "factory": ("factory",),
    "builder": ("builder",),
    "adapter": ("adapter", "wrapper"),
    "observer": ("observer", "listener", "subscriber"),
    "repository": ("repository",),
    "service": ("service",),
    "controller": ("controller",),
    "handler": ("handler",),
    "decorator": ("decorator",),
    "visitor": ("visitor",),
    "strategy": ("strategy", "policy"),
    "singleton": ("singleton",),
}

_INHERITANCE = ("extends", "implements")
_CONTAINMENT = ("aggregates", "composes", "associates")


@dataclass(frozen=True)
class PatternRule:
    name: str
    predicate: PatternPredicate


def _naming_rule(tag: str, fragments: Tuple[str, ...]) -> PatternRule:
    def predicate(graph: "CodeGraph", node_id: str) -> bool:
        name = graph.nodes[node_id].name.lower()
        return any(fragment in name for fragment in fragments)

    return PatternRule(tag, predicate)


def _is_polymorphic_interface(graph: "CodeGraph", node_id: str) -> bool:
    node = graph.nodes[node_id]
    if node.node_type != "interface" and not node.is_abstract:
        return False
    implementors = {e.source for e in graph.incoming(node_id) if e.relation_type in _INHERITANCE}
    return len(implementors) >= 2


def _is_implementation(graph: "CodeGraph", node_id: str) -> bool:
    return any(e.relation_type == "implements" for e in graph.outgoing(node_id))


def _observes(graph: "CodeGraph", node_id: str) -> bool:
    return any(e.relation_type == "observes" for e in graph.outgoing(node_id)) or any(
        e.relation_type == "observes" for e in graph.incoming(node_id)
    )


def _decorates(graph: "CodeGraph", node_id: str) -> bool:
    return any(e.relation_type == "decorates" for e in graph.outgoing(node_id))


def _is_composite(graph: "CodeGraph", node_id: str) -> bool:
    out = graph.outgoing(node_id)
    parents = {e.target for e in out if e.relation_type in _INHERITANCE}
    return any(e.relation_type in _CONTAINMENT and e.target in parents for e in out)


class PatternRegistry:
    """Ordered set of pattern rules; a tag fires once even if several rules match."""

    def __init__(self, rules: Iterable[PatternRule] = ()) -> None:
        self._rules: List[PatternRule] = list(rules)

    def register(self, name: str, predicate: PatternPredicate) -> None:
        self._rules.append(PatternRule(name, predicate))

    @property
    def names(self) -> List[str]:
        return list(dict.fromkeys(rule.name for rule in self._rules))

    def detect(self, graph: "CodeGraph", node_id: str) -> List[str]:
        tags: List[str] = []
        for rule in self._rules:
            if rule.name in tags:
                continue
            try:
                matched = rule.predicate(graph, node_id)
            except Exception as exc:
                logger.warning("Pattern rule '%s' failed on %s: %s", rule.name, node_id, exc)
                continue
            if matched:
                tags.append(rule.name)
        return tags


def default_registry() -> PatternRegistry:
    rules = [_naming_rule(tag, fragments) for tag, fragments in NAMING_CONVENTIONS.items()]
    rules.extend([
        PatternRule("polymorphic_interface", _is_polymorphic_interface),
        PatternRule("implementation", _is_implementation),
        PatternRule("observer", _observes),
        PatternRule("decorator", _decorates),
        PatternRule("composite", _is_composite),
    ])
    return PatternRegistry(rules)


def detect_patterns(
    graph: "CodeGraph", node_id: str, registry: Optional[PatternRegistry] = None,
) -> List[str]:
    """Pattern tags for *node_id*, using the default rules unless given others."""
    return (registry or default_registry()).detect(graph, node_id)


def known_pattern_names() -> List[str]:
    return default_registry().names
