"""Queues, persistence and file helpers."""
