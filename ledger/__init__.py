"""Persistent tally and spent-nullifier ledger."""

from .voting_ledger import (
    JsonLedgerStore,
    LedgerSnapshot,
    LedgerState,
    LedgerStore,
    MemoryLedgerStore,
    VotingLedger,
)

__all__ = [
    'VotingLedger',
    'LedgerState',
    'LedgerSnapshot',
    'LedgerStore',
    'MemoryLedgerStore',
    'JsonLedgerStore',
]
