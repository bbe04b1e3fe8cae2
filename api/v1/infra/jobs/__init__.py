"""
Background job infrastructure.

This package provides a tenant-scoped job queue with:
- At most one active job per (tenant, job type)
- Priority-ordered claiming with exponential retry backoff
- Ordered pipelines with cooperative cancellation and progress reporting
- Heartbeats and recovery of jobs held by crashed workers
"""
