"""Query understanding: decide how a natural-language question is answered.

Rules are tried in a fixed order and the first match wins:

1. semantic-question markers ("what is", "explain", "compare", ...)
2. aggregations (sum, average, count, max, min)
3. filters (where-clauses, greater/less than, contains, ``col = value``)
4. sorts (sort/order by, top N, bottom N)
5. dataset description ("describe", "summary", "statistics")
6. keyword heuristic naming a known column
7. free-text search

Explicit semantic markers outrank structured patterns, so "what is the total
cost of ownership" is a semantic question, not a sum.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Pattern, Sequence, Tuple

import structlog

from ..common.metrics import MetricsCollector

logger = structlog.get_logger("intelligence.query_understanding")


class IntentType(Enum):
    """How a query should be answered."""
    AGGREGATE = "aggregate"
    FILTER = "filter"
    SORT = "sort"
    DESCRIBE = "describe"
    SEMANTIC = "semantic"
    SEARCH = "search"
    UNKNOWN = "unknown"


@dataclass
class Condition:
    """One filter predicate: ``column operator value``."""
    column: str
    operator: str  # =, >, <, contains
    value: Any

    def to_dict(self) -> Dict[str, Any]:
        return {"column": self.column, "operator": self.operator, "value": self.value}


@dataclass
class QueryIntent:
    """Classification of one query plus its extracted operands."""
    type: IntentType
    operation: str
    column: Optional[str] = None
    value: Any = None
    conditions: List[Condition] = field(default_factory=list)
    limit: Optional[int] = None
    order: Optional[str] = None  # asc, desc
    keywords: List[str] = field(default_factory=list)
    semantic_query: Optional[str] = None
    matched_rule: str = "fallback"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "operation": self.operation,
            "column": self.column,
            "value": self.value,
            "conditions": [c.to_dict() for c in self.conditions],
            "limit": self.limit,
            "order": self.order,
            "keywords": self.keywords,
            "semantic_query": self.semantic_query,
            "matched_rule": self.matched_rule,
        }


SEMANTIC_MARKERS = (
    "what is", "what are", "how to", "how do", "explain", "tell me about",
    "compare", "difference between", "similarities between",
    "advantages of", "disadvantages of", "benefits of",
    "why is", "why are", "when should", "where can",
)

# Words that never name a column
COMMON_WORDS = frozenset({
    "data", "rows", "row", "records", "record", "file", "excel", "sheet", "table",
    "show", "find", "list", "get", "give", "all", "the", "what", "are", "and",
    "not", "with", "where", "which", "for", "from", "that", "this", "those",
    "these", "please", "me", "any", "some", "about", "into", "have", "has",
    "was", "were", "there", "their", "them",
})

_QUOTED_VALUE = r"(['\"]?)([^'\"\n]+)\2"
_NUMBER = r"(-?\d+(?:[.,]\d+)*)"

RuleBuilder = Callable[["re.Match", str], QueryIntent]


def _parse_number(text: str) -> Optional[float]:
    try:
        return float(text.replace(",", ""))
    except (TypeError, ValueError):
        return None


def _clean_value(value: str) -> str:
    return value.strip().rstrip("?.!").strip()


class QueryIntentClassifier:
    """Ordered pattern matcher producing a ``QueryIntent``.

    Parameters
    - metrics_collector: optional collector counting intents
    """

    def __init__(self, metrics_collector: Optional[MetricsCollector] = None):
        self.metrics = metrics_collector

        self.semantic_pattern = re.compile(
            r"\b(?:" + "|".join(re.escape(m) for m in SEMANTIC_MARKERS) + r")\b",
            re.IGNORECASE
        )

        # (rule name, pattern, builder) in priority order
        self.structured_rules: List[Tuple[str, Pattern, RuleBuilder]] = [
            ("sum", re.compile(
                r"\b(?:sum|total)\s+(?:of\s+)?(?:the\s+)?(?:all\s+)?(\w+)", re.I),
             self._aggregate("sum")),
            ("average", re.compile(
                r"\b(?:average|mean|avg)\s+(?:of\s+)?(?:the\s+)?(?:all\s+)?(\w+)", re.I),
             self._aggregate("average")),
            ("count", re.compile(r"\b(?:count|how\s+many)\b", re.I),
             self._count),
            ("max", re.compile(
                r"\b(?:max|maximum|highest|largest)\s+(?:of\s+)?(?:the\s+)?(\w+)", re.I),
             self._aggregate("max")),
            ("min", re.compile(
                r"\b(?:min|minimum|lowest|smallest)\s+(?:of\s+)?(?:the\s+)?(\w+)", re.I),
             self._aggregate("min")),
            ("where", re.compile(
                r"\b(?:show|find|list|get)\s+(?:(?:all\s+)?(?:rows|records)\s+)?(?:where|with)\s+"
                r"(\w+)\s+(?:is|equals?|=)\s+" + _QUOTED_VALUE, re.I),
             self._where),
            ("greater", re.compile(
                r"\b(\w+)\s+(?:is\s+)?(?:greater\s+than|more\s+than|above|over|>)\s*" + _NUMBER, re.I),
             self._compare(">")),
            ("less", re.compile(
                r"\b(\w+)\s+(?:is\s+)?(?:less\s+than|fewer\s+than|below|under|<)\s*" + _NUMBER, re.I),
             self._compare("<")),
            ("contains", re.compile(
                r"\b(\w+)\s+(?:contains|includes|has)\s+" + _QUOTED_VALUE, re.I),
             self._contains),
            ("equals", re.compile(
                r"\b(\w+)\s*(?:==?|\bequals\b)\s*" + _QUOTED_VALUE, re.I),
             self._equals),
            ("sort", re.compile(
                r"\b(?:sort|order)\s+(?:by\s+)?(\w+)(?:\s+(asc|ascending|desc|descending))?", re.I),
             self._sort),
            ("top", re.compile(r"\b(?:top|first)\s+(\d+)\b(.*)", re.I),
             self._limit("top", "desc")),
            ("bottom", re.compile(r"\b(?:bottom|last)\s+(\d+)\b(.*)", re.I),
             self._limit("bottom", "asc")),
            ("describe", re.compile(
                r"\b(?:describe|summary|summari[sz]e|overview|statistics|stats)\b", re.I),
             self._describe),
        ]

    def classify(self, query: str, columns: Optional[Sequence[str]] = None) -> QueryIntent:
        """Classify ``query``; ``columns`` lets the heuristics pick real fields."""
        text = " ".join((query or "").split())
        keywords = self._extract_keywords(text)

        intent = self._classify(text, keywords, columns)
        intent.keywords = keywords
        if columns:
            self._resolve_columns(intent, columns)

        if self.metrics:
            self.metrics.record_intent(intent.type.value)

        logger.debug(
            "Query classified",
            query=text[:50],
            intent=intent.type.value,
            operation=intent.operation,
            matched_rule=intent.matched_rule
        )
        return intent

    def _classify(
        self,
        text: str,
        keywords: List[str],
        columns: Optional[Sequence[str]]
    ) -> QueryIntent:
        if not text:
            return QueryIntent(type=IntentType.UNKNOWN, operation="find", matched_rule="empty")

        if self.semantic_pattern.search(text):
            return QueryIntent(
                type=IntentType.SEMANTIC,
                operation="semantic",
                semantic_query=text,
                matched_rule="semantic_marker"
            )

        for name, pattern, builder in self.structured_rules:
            match = pattern.search(text)
            if match:
                intent = builder(match, text)
                intent.matched_rule = name
                return intent

        if columns:
            intent = self._keyword_heuristic(keywords, columns, text)
            if intent is not None:
                return intent

        return QueryIntent(
            type=IntentType.SEARCH,
            operation="find",
            value=text,
            semantic_query=text,
            matched_rule="free_text"
        )

    def _aggregate(self, operation: str) -> RuleBuilder:
        def build(match: "re.Match", text: str) -> QueryIntent:
            return QueryIntent(type=IntentType.AGGREGATE, operation=operation, column=match.group(1))
        return build

    def _count(self, match: "re.Match", text: str) -> QueryIntent:
        return QueryIntent(type=IntentType.AGGREGATE, operation="count")

    def _where(self, match: "re.Match", text: str) -> QueryIntent:
        column, value = match.group(1), _clean_value(match.group(3))
        return QueryIntent(
            type=IntentType.FILTER,
            operation="filter",
            column=column,
            value=value,
            conditions=[Condition(column, "=", value)]
        )

    def _compare(self, operator: str) -> RuleBuilder:
        def build(match: "re.Match", text: str) -> QueryIntent:
            column, value = match.group(1), _parse_number(match.group(2))
            return QueryIntent(
                type=IntentType.FILTER,
                operation="filter",
                column=column,
                value=value,
                conditions=[Condition(column, operator, value)]
            )
        return build

    def _contains(self, match: "re.Match", text: str) -> QueryIntent:
        column, value = match.group(1), _clean_value(match.group(3))
        return QueryIntent(
            type=IntentType.FILTER,
            operation="filter",
            column=column,
            value=value,
            conditions=[Condition(column, "contains", value)]
        )

    def _equals(self, match: "re.Match", text: str) -> QueryIntent:
        column, value = match.group(1), _clean_value(match.group(3))
        return QueryIntent(
            type=IntentType.FILTER,
            operation="filter",
            column=column,
            value=value,
            conditions=[Condition(column, "=", value)]
        )

    def _sort(self, match: "re.Match", text: str) -> QueryIntent:
        direction = (match.group(2) or "asc").lower()
        return QueryIntent(
            type=IntentType.SORT,
            operation="sort",
            column=match.group(1),
            order="desc" if direction.startswith("desc") else "asc"
        )

    def _limit(self, operation: str, order: str) -> RuleBuilder:
        def build(match: "re.Match", text: str) -> QueryIntent:
            rest = match.group(2) or ""
            by_match = re.search(r"\bby\s+(\w+)", rest, re.I)
            if by_match:
                column = by_match.group(1)
            else:
                words = [w for w in re.findall(r"\w+", rest.lower()) if w not in COMMON_WORDS]
                column = words[0] if words else None
            return QueryIntent(
                type=IntentType.SORT,
                operation=operation,
                column=column,
                limit=int(match.group(1)),
                order=order
            )
        return build

    def _describe(self, match: "re.Match", text: str) -> QueryIntent:
        return QueryIntent(type=IntentType.DESCRIBE, operation="describe")

    def _keyword_heuristic(
        self,
        keywords: List[str],
        columns: Sequence[str],
        text: str
    ) -> Optional[QueryIntent]:
        """A keyword naming a known column turns the query into a column search."""
        lookup = {str(c).lower(): str(c) for c in columns}
        for index, keyword in enumerate(keywords):
            if keyword in lookup:
                remainder = [k for i, k in enumerate(keywords) if i != index]
                number = re.search(_NUMBER, text)
                value: Any = " ".join(remainder) if remainder else None
                if value is None and number:
                    value = _parse_number(number.group(1))
                return QueryIntent(
                    type=IntentType.SEARCH,
                    operation="find",
                    column=lookup[keyword],
                    value=value,
                    semantic_query=text,
                    matched_rule="column_keyword"
                )
        return None

    def _resolve_columns(self, intent: QueryIntent, columns: Sequence[str]) -> None:
        """Map extracted column names onto actual field names, case-insensitively."""
        lookup = {str(c).lower(): str(c) for c in columns}
        if intent.column:
            intent.column = lookup.get(intent.column.lower(), intent.column)
        for condition in intent.conditions:
            condition.column = lookup.get(condition.column.lower(), condition.column)

    def _extract_keywords(self, text: str) -> List[str]:
        """Extract keywords from query."""
        words = re.findall(r"\b\w+\b", text.lower())
        keywords = []
        for word in words:
            if len(word) > 2 and word not in COMMON_WORDS and word not in keywords:
                keywords.append(word)
        return keywords


_default_classifier: Optional[QueryIntentClassifier] = None


def parse_intent(query: str, columns: Optional[Sequence[str]] = None) -> QueryIntent:
    """Classify ``query`` with a shared default classifier."""
    global _default_classifier
    if _default_classifier is None:
        _default_classifier = QueryIntentClassifier()
    return _default_classifier.classify(query, columns)
