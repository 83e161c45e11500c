# VaultProgress - Progress tracking for long-running extraction jobs
# Version 0.1.0

"""
VaultProgress tracks long-running AI extraction jobs (Career Vault intelligence
extraction) so clients can show live progress and recover from stalls.

Layers:
1. Store - Progress records, checkpoints, error log (SQLAlchemy)
2. Publisher - Server-side progress reporting, best-effort
3. Subscriber - Client-side live view over the change feed
4. Recovery - Resume/Skip decision when a job stalls
"""

__version__ = "0.1.0"
