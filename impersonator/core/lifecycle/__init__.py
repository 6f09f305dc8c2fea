"""
Transaction Lifecycle

Usage:
    from impersonator.core.lifecycle import TransactionLifecycleEngine

    engine = TransactionLifecycleEngine(authorization=owners, dispatcher=dispatcher)
    tx = await engine.create({"from": safe, "to": recipient, "value": "1000"})
    await engine.approve(tx.id, owner_a)
    await engine.execute(tx.id)
"""

from .engine import (
    TransactionLifecycleEngine,
    compute_fingerprint,
)

__all__ = [
    "TransactionLifecycleEngine",
    "compute_fingerprint",
]
