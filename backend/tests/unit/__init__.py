"""Unit tests for the Amber price cache.

Covers the rate-limit state, in-flight tracking, usage metering, the Amber
client, the document and cache stores, gap detection and the orchestrator.
"""
