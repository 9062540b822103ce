"""Embedding providers.

Exports the provider contract and the ``SentenceTransformerProvider`` which
handles model lifecycle and vector generation. Keep heavy ML imports within
the loader to minimize import overhead for keyword-only paths.
"""
