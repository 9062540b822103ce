"""Lexical scoring that works without the embedding model.

Scoring is coverage based: the share of distinct query tokens present in the
document. A literal occurrence of the whole query inside the document is the
strongest lexical signal and always scores at or above any partial match.
"""

import re
from dataclasses import dataclass
from typing import FrozenSet, List, Tuple

_PUNCTUATION = re.compile(r"[^\w\s]")
MIN_TOKEN_LENGTH = 3


def tokenize(text: str) -> List[str]:
    """Lower-case, strip punctuation, split on whitespace, drop short tokens.

    Short function words ("a", "of", "to") fall out by length; there is no
    stopword list.
    """
    if not text:
        return []
    cleaned = _PUNCTUATION.sub("", str(text).lower())
    return [token for token in cleaned.split() if len(token) >= MIN_TOKEN_LENGTH]


@dataclass(frozen=True)
class PreparedQuery:
    """Query tokens and phrase, computed once per search."""
    text: str
    phrase: str
    tokens: Tuple[str, ...]
    token_set: FrozenSet[str]

    @property
    def is_empty(self) -> bool:
        return not self.tokens


class KeywordScorer:
    """Coverage-based keyword scorer.

    Parameters
    - exact_match_score: score for a document containing the whole query
    - partial_match_weight: multiplier applied to token coverage otherwise

    ``partial_match_weight`` may not exceed ``exact_match_score``; that keeps
    an exact phrase match ranked at or above every partial match.
    """

    def __init__(self, exact_match_score: float = 1.0, partial_match_weight: float = 0.85):
        if partial_match_weight > exact_match_score:
            raise ValueError(
                "partial_match_weight must not exceed exact_match_score "
                f"({partial_match_weight} > {exact_match_score})"
            )
        self.exact_match_score = exact_match_score
        self.partial_match_weight = partial_match_weight

    def prepare(self, query: str) -> PreparedQuery:
        tokens = []
        for token in tokenize(query):
            if token not in tokens:
                tokens.append(token)
        phrase = " ".join(str(query or "").lower().split())
        return PreparedQuery(
            text=query or "",
            phrase=phrase,
            tokens=tuple(tokens),
            token_set=frozenset(tokens),
        )

    def score_prepared(self, prepared: PreparedQuery, document: str) -> float:
        """Score a document against a prepared query."""
        if prepared.is_empty or not document:
            return 0.0

        document_lower = " ".join(document.lower().split())
        if prepared.phrase and prepared.phrase in document_lower:
            return self.exact_match_score

        document_tokens = set(tokenize(document))
        matches = sum(1 for token in prepared.tokens if token in document_tokens)
        coverage = matches / len(prepared.tokens)
        return coverage * self.partial_match_weight

    def score(self, query: str, document: str) -> float:
        """Score ``document`` for ``query``; empty query tokens score 0."""
        return self.score_prepared(self.prepare(query), document)

    def matched_terms(self, prepared: PreparedQuery, document: str) -> List[str]:
        """Distinct query tokens found in the document, in query order."""
        if prepared.is_empty or not document:
            return []
        document_tokens = set(tokenize(document))
        return [token for token in prepared.tokens if token in document_tokens]
