"""Record helpers shared by scoring, fusion, ingest and query execution.

A record is an opaque mapping of field names to values: a spreadsheet row
or a document chunk. Three bookkeeping fields are reserved and never treated
as content:

- ``_vector``: the embedding computed at ingest time
- ``_text_hash``: fingerprint of the text that vector was computed from
- ``id``: caller-assigned identifier
"""

import hashlib
import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, MutableMapping, Optional

import numpy as np

Record = MutableMapping[str, Any]

VECTOR_FIELD = "_vector"
TEXT_HASH_FIELD = "_text_hash"
ID_FIELD = "id"

BOOKKEEPING_FIELDS = frozenset({VECTOR_FIELD, TEXT_HASH_FIELD, ID_FIELD})


def content_items(record: Any) -> List[tuple]:
    """Return ``(key, value)`` pairs of a record, bookkeeping removed.

    Anything that is not a mapping yields no content.
    """
    if not isinstance(record, Mapping):
        return []
    return [(k, v) for k, v in record.items() if k not in BOOKKEEPING_FIELDS]


def content_fields(record: Any) -> List[str]:
    return [str(k) for k, _ in content_items(record)]


def _stringify(value: Any) -> str:
    if value is None:
        return ""
    try:
        return str(value)
    except Exception:
        return ""


def record_text(record: Any) -> str:
    """Flatten a record into the text used for keyword scoring."""
    parts = [_stringify(value) for _, value in content_items(record)]
    return " ".join(part for part in parts if part)


def record_embedding_text(record: Any) -> str:
    """Render a record as ``label: value`` pairs for the embedding model.

    Underscores in field names become spaces so column headers read as
    words, e.g. ``unit_price: 3`` -> ``unit price: 3``.
    """
    pairs = []
    for key, value in content_items(record):
        label = str(key).replace("_", " ")
        pairs.append(f"{label}: {_stringify(value)}")
    return ". ".join(pairs)


def record_key(record: Any) -> str:
    """Deterministic content key identifying a record across ranked lists."""
    payload = {str(k): v for k, v in content_items(record)}
    return json.dumps(payload, sort_keys=True, default=str, ensure_ascii=False)


def text_fingerprint(text: str) -> str:
    return hashlib.sha1(text.encode("utf-8")).hexdigest()


def record_vector(record: Any) -> Optional[np.ndarray]:
    """Return the attached embedding as a 1-D float array, or ``None``.

    Missing, empty, non-numeric or multi-dimensional vectors are all
    treated as absent.
    """
    if not isinstance(record, Mapping):
        return None
    raw = record.get(VECTOR_FIELD)
    if raw is None:
        return None
    try:
        vector = np.asarray(raw, dtype=np.float64)
    except (TypeError, ValueError):
        return None
    if vector.ndim != 1 or vector.size == 0:
        return None
    return vector


def has_current_vector(record: Any) -> bool:
    """True when the record carries a vector computed from its current text.

    Records embedded before fingerprints were tracked (vector present, no
    ``_text_hash``) are trusted as current.
    """
    if record_vector(record) is None:
        return False
    stored_hash = record.get(TEXT_HASH_FIELD)
    if stored_hash is None:
        return True
    return stored_hash == text_fingerprint(record_embedding_text(record))


def attach_vector(record: Record, vector: Any, text: Optional[str] = None) -> None:
    """Attach an embedding (as plain floats) and its source fingerprint."""
    if text is None:
        text = record_embedding_text(record)
    record[VECTOR_FIELD] = [float(x) for x in np.asarray(vector, dtype=np.float64).ravel()]
    record[TEXT_HASH_FIELD] = text_fingerprint(text)


def public_view(record: Any) -> Dict[str, Any]:
    """Copy of a record without the embedding payload (for responses)."""
    if not isinstance(record, Mapping):
        return {}
    return {k: v for k, v in record.items() if k not in (VECTOR_FIELD, TEXT_HASH_FIELD)}


@dataclass
class ScoredCandidate:
    """A record paired with its ranking score for one query.

    Consumers order candidates by ``score`` descending. The component
    scores are kept for explanation and debugging.
    """
    record: Record
    score: float
    semantic_score: float = 0.0
    keyword_score: float = 0.0
    matched_terms: List[str] = field(default_factory=list)
    sources: List[str] = field(default_factory=list)

    @property
    def key(self) -> str:
        return record_key(self.record)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "record": public_view(self.record),
            "score": self.score,
            "semantic_score": self.semantic_score,
            "keyword_score": self.keyword_score,
            "matched_terms": self.matched_terms,
            "sources": self.sources,
        }
