"""Resilience adapters around the embedding provider.

Contents
- ``circuit_breaker``: stops calling a failing model until it has had time to
  recover, so searches fall back to keyword ranking immediately.
"""
