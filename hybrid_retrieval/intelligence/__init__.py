"""Query intelligence: intent classification and structured execution.

Contents
- ``query_understanding``: ordered rules mapping a question to a ``QueryIntent``
- ``query_executor``: ``QueryRouter`` running that intent with pandas or the
  hybrid search engine
"""
