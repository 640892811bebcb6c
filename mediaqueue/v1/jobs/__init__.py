"""
Job pipeline for media analysis.

This package provides the in-process processing pipeline with:
- Bounded priority queue with delayed (scheduled) eligibility
- Worker pool bounded by a local and a downstream concurrency ceiling
- Circuit breaker and exponential backoff around the analysis service
- Time-bounded transfer status tracking for batches of job ids
"""
