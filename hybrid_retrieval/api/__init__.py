"""API subpackage for the retrieval service.

Routers expose endpoints for hybrid search, intent classification, question
answering over records and the embedding pass. Transport stays thin and
delegates to the engine, router and indexer held on ``app.state``.
"""
