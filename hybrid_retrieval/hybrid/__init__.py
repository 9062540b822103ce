"""Hybrid search components for semantic + lexical ranking.

Includes the ``HybridSearchEngine`` which coordinates vector similarity
(semantic) and keyword coverage (lexical) signals and merges results.
"""
