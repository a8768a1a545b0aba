"""Persisted task queue, retry state machine, and scheduling loop."""
