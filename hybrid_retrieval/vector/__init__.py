"""Vector math used by semantic scoring.

Primary components:
- ``similarity``: cosine similarity with a zero-score policy for degenerate input.
"""
