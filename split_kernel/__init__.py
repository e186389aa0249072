"""
Split Kernel

Versioned split configurations and monthly billing cycles with:
- Deterministic per-receiver split of every charge
- One active configuration per scope, enforced by the database
- Append-only, hash-verifiable audit trail
- Flush-only services; callers own the transaction
"""

__version__ = "0.1.0"
