"""Execute classified questions against a set of records.

Structured intents (aggregate, filter, sort, describe) run as pandas
operations over the records' content fields. Everything else goes to the
``HybridSearchEngine``; when it finds nothing, a ``column: value`` search and
then a plain substring search are tried before giving up with a message.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import pandas as pd
import structlog

from ..common.metrics import measure_time
from ..hybrid.search_manager import HybridSearchEngine
from ..records import Record, content_fields, content_items, public_view, record_text
from .query_understanding import Condition, IntentType, QueryIntent, QueryIntentClassifier

logger = structlog.get_logger("intelligence.query_executor")

EMPTY_QUESTION_ROWS = 10
FILTER_LIMIT = 50
SORT_LIMIT = 20
SEARCH_FALLBACK_LIMIT = 20

_NON_NUMERIC = r"[^0-9.\-]"
_COLUMN_VALUE = re.compile(r"(\w+)\s*[:=]\s*(.+)")


@dataclass
class QueryResult:
    """Answer to one question.

    ``kind`` is one of ``records``, ``aggregate``, ``summary`` or ``message``.
    """
    kind: str
    intent: Optional[QueryIntent] = None
    records: List[Record] = field(default_factory=list)
    value: Any = None
    summary: Optional[Dict[str, Any]] = None
    message: Optional[str] = None
    degraded: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "intent": self.intent.to_dict() if self.intent else None,
            "records": [public_view(record) for record in self.records],
            "value": self.value,
            "summary": self.summary,
            "message": self.message,
            "degraded": self.degraded,
        }


def collect_columns(records: Sequence[Record]) -> List[str]:
    """Content field names across all records, in first-seen order."""
    columns: List[str] = []
    seen = set()
    for record in records:
        for name in content_fields(record):
            if name not in seen:
                seen.add(name)
                columns.append(name)
    return columns


def resolve_column(name: Optional[str], columns: Sequence[str]) -> Optional[str]:
    """Find the field ``name`` refers to, ignoring case, spaces and underscores."""
    if not name:
        return None
    wanted = name.lower()
    for column in columns:
        if column.lower() == wanted:
            return column
    squashed = re.sub(r"[\s_]+", "", wanted)
    for column in columns:
        if re.sub(r"[\s_]+", "", column.lower()) == squashed:
            return column
    return None


def to_frame(records: Sequence[Record]) -> pd.DataFrame:
    """Content fields as a DataFrame whose index is the record position."""
    return pd.DataFrame(
        [dict(content_items(record)) for record in records],
        index=range(len(records))
    )


def numeric_values(series: pd.Series) -> pd.Series:
    """Coerce values to numbers after stripping currency and separators."""
    cleaned = series.where(series.notna(), "").astype(str).str.replace(_NON_NUMERIC, "", regex=True)
    return pd.to_numeric(cleaned, errors="coerce")


def is_numeric_column(series: pd.Series) -> bool:
    present = series[series.notna()]
    if present.empty:
        return False
    return bool(numeric_values(present).notna().all())


@measure_time("describe", component="query_router")
def describe_records(records: Sequence[Record]) -> Dict[str, Any]:
    """Per-column summary of a record set."""
    frame = to_frame(records)
    columns = [str(c) for c in frame.columns]
    summary: Dict[str, Any] = {
        "total_rows": len(frame),
        "columns": len(columns),
        "column_names": columns,
        "fields": {},
    }

    for column in frame.columns:
        series = frame[column]
        present = series[series.notna()]
        if is_numeric_column(series):
            numbers = numeric_values(present)
            summary["fields"][str(column)] = {
                "type": "numeric",
                "count": int(numbers.count()),
                "unique": int(present.astype(str).nunique()),
                "min": float(numbers.min()),
                "max": float(numbers.max()),
                "average": round(float(numbers.mean()), 2),
            }
        else:
            summary["fields"][str(column)] = {
                "type": "text",
                "count": int(present.count()),
                "unique": int(present.astype(str).nunique()),
                "sample": [str(v) for v in present.head(3)],
            }

    return summary


class QueryRouter:
    """Answer a natural-language question about a record set.

    Parameters
    - engine: search engine used for semantic and free-text questions
    - classifier: intent classifier (a default one is created if omitted)
    """

    def __init__(self, engine: HybridSearchEngine, classifier: Optional[QueryIntentClassifier] = None):
        self.engine = engine
        self.classifier = classifier or QueryIntentClassifier(metrics_collector=engine.metrics)

    async def run(
        self,
        records: Sequence[Record],
        question: str,
        top_k: Optional[int] = None
    ) -> QueryResult:
        """Classify ``question`` and execute it against ``records``."""
        records = list(records or [])
        if not (question or "").strip():
            return QueryResult(kind="records", records=records[:EMPTY_QUESTION_ROWS])

        columns = collect_columns(records)
        intent = self.classifier.classify(question, columns)

        if intent.type == IntentType.AGGREGATE:
            result = self._aggregate(records, columns, intent)
        elif intent.type == IntentType.FILTER:
            result = self._filter(records, columns, intent)
        elif intent.type == IntentType.SORT:
            result = self._sort(records, columns, intent)
        elif intent.type == IntentType.DESCRIBE:
            result = self._describe(records, intent)
        else:
            result = await self._search(records, columns, question, intent, top_k)

        logger.info(
            "Query executed",
            intent=intent.type.value,
            operation=intent.operation,
            kind=result.kind,
            results_count=len(result.records),
            degraded=result.degraded
        )
        return result

    def _aggregate(self, records: List[Record], columns: List[str], intent: QueryIntent) -> QueryResult:
        if intent.operation == "count":
            return QueryResult(kind="aggregate", intent=intent, value=len(records))

        column = resolve_column(intent.column, columns)
        if column is None:
            return QueryResult(
                kind="message",
                intent=intent,
                message=f"Column '{intent.column}' not found. Available columns: {', '.join(columns)}"
            )

        numbers = numeric_values(to_frame(records)[column]).dropna()
        if numbers.empty:
            return QueryResult(kind="message", intent=intent, message=f"No numeric values found in '{column}'")

        if intent.operation == "sum":
            value = float(numbers.sum())
        elif intent.operation == "average":
            value = round(float(numbers.mean()), 2)
        elif intent.operation == "max":
            value = float(numbers.max())
        else:
            value = float(numbers.min())
        return QueryResult(kind="aggregate", intent=intent, value=value)

    def _condition_mask(self, frame: pd.DataFrame, columns: List[str], condition: Condition) -> pd.Series:
        column = resolve_column(condition.column, columns)
        if column is None:
            return pd.Series(False, index=frame.index)

        series = frame[column]
        present = series.notna()
        if condition.operator in (">", "<"):
            try:
                threshold = float(condition.value)
            except (TypeError, ValueError):
                return pd.Series(False, index=frame.index)
            numbers = numeric_values(series)
            mask = numbers > threshold if condition.operator == ">" else numbers < threshold
            return mask.fillna(False) & present

        text = series.astype(str).str.strip().str.lower()
        value = str(condition.value).strip().lower()
        if condition.operator == "contains":
            return text.str.contains(value, regex=False) & present
        return (text == value) & present

    def _filter(self, records: List[Record], columns: List[str], intent: QueryIntent) -> QueryResult:
        frame = to_frame(records)
        mask = pd.Series(True, index=frame.index)
        for condition in intent.conditions:
            mask &= self._condition_mask(frame, columns, condition)

        matched = [records[i] for i in frame.index[mask.to_numpy()]][:FILTER_LIMIT]
        if not matched:
            return QueryResult(kind="message", intent=intent, message="No records match those conditions")
        return QueryResult(kind="records", intent=intent, records=matched)

    def _sort(self, records: List[Record], columns: List[str], intent: QueryIntent) -> QueryResult:
        limit = intent.limit or SORT_LIMIT
        if intent.column is None:
            return QueryResult(kind="records", intent=intent, records=records[:limit])

        column = resolve_column(intent.column, columns)
        if column is None:
            return QueryResult(
                kind="message",
                intent=intent,
                message=f"Column '{intent.column}' not found. Available columns: {', '.join(columns)}"
            )

        series = to_frame(records)[column]
        if is_numeric_column(series):
            keys = numeric_values(series)
        else:
            keys = series.where(series.notna(), "").astype(str).str.lower()

        ordered = keys.sort_values(
            ascending=intent.order != "desc",
            kind="mergesort",
            na_position="last"
        )
        return QueryResult(
            kind="records",
            intent=intent,
            records=[records[i] for i in ordered.index[:limit]]
        )

    def _describe(self, records: List[Record], intent: QueryIntent) -> QueryResult:
        if not records:
            return QueryResult(kind="message", intent=intent, message="No data available")
        return QueryResult(kind="summary", intent=intent, summary=describe_records(records))

    async def _search(
        self,
        records: List[Record],
        columns: List[str],
        question: str,
        intent: QueryIntent,
        top_k: Optional[int]
    ) -> QueryResult:
        outcome = await self.engine.search_with_details(
            records,
            intent.semantic_query or question,
            top_k=top_k
        )
        if outcome.records:
            return QueryResult(
                kind="records",
                intent=intent,
                records=outcome.records,
                degraded=outcome.degraded
            )

        fallback = self._smart_search(records, columns, question, intent)
        if fallback:
            return QueryResult(kind="records", intent=intent, records=fallback, degraded=outcome.degraded)

        return QueryResult(
            kind="message",
            intent=intent,
            message=f'No results found for "{question}"',
            degraded=outcome.degraded
        )

    def _smart_search(
        self,
        records: List[Record],
        columns: List[str],
        question: str,
        intent: QueryIntent
    ) -> List[Record]:
        """``column: value`` containment, then substring search over all fields."""
        column, value = None, None
        match = _COLUMN_VALUE.search(question)
        if match:
            column, value = resolve_column(match.group(1), columns), match.group(2)
        elif intent.column and intent.value is not None:
            column, value = resolve_column(intent.column, columns), intent.value

        if column is not None and str(value).strip():
            frame = to_frame(records)
            mask = self._condition_mask(frame, columns, Condition(column, "contains", value))
            matched = [records[i] for i in frame.index[mask.to_numpy()]]
            if matched:
                return matched[:SEARCH_FALLBACK_LIMIT]

        needle = question.strip().lower()
        return [r for r in records if needle in record_text(r).lower()][:SEARCH_FALLBACK_LIMIT]
