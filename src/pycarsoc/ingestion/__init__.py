"""Ingestion layer.

Helpers that turn raw provider payloads (adapter samples, cloud JSON)
into normalized values before they become snapshots.
"""

__all__: list[str] = []
