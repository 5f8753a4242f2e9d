"""
Personal Banking Ledger

Account ledger engine with an append-only transaction log, Decimal money,
per-account locking and pluggable durable stores.
"""

__version__ = "1.0.0"
