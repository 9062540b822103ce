"""Search ranking and result fusion components.

Scorers that produce the lexical signal, and fusion strategies that merge a
semantic ranking with a lexical ranking into one result list.

Contents
- ``keyword``: coverage-based lexical scorer and tokenizer
- ``fusion``: reciprocal-rank fusion and the linear-blend alternative
"""
