"""
Voting Ledger
=============
Authoritative poll state: the bound votingID, the tally and the set of spent
nullifiers. Every mutation computes the next snapshot, persists it, and only
then swaps it in, so a failed write leaves both disk and memory on the
previous state.
"""

import json
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, FrozenSet, Mapping, Optional

from exceptions import (
    AlreadySpent,
    InvalidVote,
    LedgerClosed,
    LedgerCorruptedError,
    LedgerStateError,
    PersistenceError,
    RootMismatch,
)
from merkle.field_hash import is_field_element
from utils.utils import atomic_write_json

logger = logging.getLogger(__name__)


class LedgerState(Enum):
    OPEN = "open"
    CLOSED = "closed"


@dataclass(frozen=True)
class LedgerSnapshot:
    """Immutable view of the ledger at one point in time"""
    voting_id: Optional[int] = None
    tally: Mapping[int, int] = field(default_factory=lambda: MappingProxyType({}))
    spent: FrozenSet[int] = frozenset()
    state: LedgerState = LedgerState.OPEN

    @property
    def total_votes(self) -> int:
        return sum(self.tally.values())

    def to_dict(self) -> Dict[str, Any]:
        return {
            'votingID': None if self.voting_id is None else str(self.voting_id),
            'votes': {str(vote): count for vote, count in sorted(self.tally.items())},
            'spentTickets': sorted(str(n) for n in self.spent),
            'state': self.state.value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'LedgerSnapshot':
        """Parse a persisted snapshot; raises ValueError on any malformed field"""
        if not isinstance(data, dict):
            raise ValueError("Ledger snapshot must be a JSON object")

        raw_id = data.get('votingID')
        voting_id = None if raw_id is None else int(raw_id)

        votes = data.get('votes', {})
        if not isinstance(votes, dict):
            raise ValueError("'votes' must be an object")
        tally = {}
        for vote, count in votes.items():
            count = int(count)
            if count < 0:
                raise ValueError(f"Negative count for vote {vote}")
            tally[int(vote)] = count

        spent_list = data.get('spentTickets', [])
        if not isinstance(spent_list, list):
            raise ValueError("'spentTickets' must be a list")
        spent = frozenset(int(n) for n in spent_list)
        if len(spent) != len(spent_list):
            raise ValueError("Duplicate entries in 'spentTickets'")

        if sum(tally.values()) != len(spent):
            raise ValueError(
                f"Tally total {sum(tally.values())} disagrees with {len(spent)} spent nullifiers")

        return cls(
            voting_id=voting_id,
            tally=MappingProxyType(tally),
            spent=spent,
            state=LedgerState(data.get('state', LedgerState.OPEN.value)),
        )


class LedgerStore(ABC):

    @abstractmethod
    def load(self) -> Optional[LedgerSnapshot]:
        """Return the persisted snapshot, or None when nothing was persisted"""
        ...

    @abstractmethod
    def save(self, snapshot: LedgerSnapshot):
        """Persist durably before returning; raise PersistenceError on failure"""
        ...


class MemoryLedgerStore(LedgerStore):
    """Non-durable store for ephemeral polls"""

    def __init__(self, snapshot: Optional[LedgerSnapshot] = None):
        self.snapshot = snapshot
        self.writes = 0

    def load(self) -> Optional[LedgerSnapshot]:
        return self.snapshot

    def save(self, snapshot: LedgerSnapshot):
        self.snapshot = snapshot
        self.writes += 1


class JsonLedgerStore(LedgerStore):
    """Ledger snapshot in a single JSON file, replaced atomically on write"""

    def __init__(self, path: Path):
        self.path = Path(path)

    def load(self) -> Optional[LedgerSnapshot]:
        if not self.path.exists():
            return None
        try:
            data = json.loads(self.path.read_text(encoding='utf-8'))
            return LedgerSnapshot.from_dict(data)
        except (OSError, ValueError, TypeError) as e:
            raise LedgerCorruptedError(f"Ledger snapshot {self.path} is unreadable: {e}") from e

    def save(self, snapshot: LedgerSnapshot):
        try:
            atomic_write_json(self.path, snapshot.to_dict())
        except OSError as e:
            raise PersistenceError(f"Could not persist ledger to {self.path}: {e}") from e

    def __repr__(self) -> str:
        return f"JsonLedgerStore({self.path})"


class VotingLedger:
    """Thread-safe tally and nullifier set bound to one votingID"""

    def __init__(self, store: Optional[LedgerStore] = None,
                 snapshot: Optional[LedgerSnapshot] = None):
        self._store = store or MemoryLedgerStore()
        self._snapshot = snapshot or LedgerSnapshot()
        self._lock = threading.RLock()

    @classmethod
    def load(cls, store: LedgerStore) -> 'VotingLedger':
        """Restore from ``store``; LedgerCorruptedError propagates"""
        snapshot = store.load()
        if snapshot is None:
            logger.info(f"No persisted ledger in {store}, starting empty")
        else:
            logger.info(f"Restored ledger: {snapshot.total_votes} votes, state {snapshot.state.value}")
        return cls(store, snapshot)

    def _commit(self, snapshot: LedgerSnapshot) -> LedgerSnapshot:
        # Caller holds the lock
        self._store.save(snapshot)
        self._snapshot = snapshot
        return snapshot

    def open(self, voting_id: int) -> LedgerSnapshot:
        """Bind ``voting_id``; re-opening with the same id is a no-op"""
        if not is_field_element(voting_id):
            raise LedgerStateError(f"votingID must be a field element, got {voting_id!r}")

        with self._lock:
            current = self._snapshot
            if current.voting_id is not None:
                if current.voting_id != voting_id:
                    raise LedgerStateError(
                        f"Ledger already bound to votingID {current.voting_id}")
                return current

            if current.state is LedgerState.CLOSED:
                raise LedgerClosed("Ledger is closed; reset it before opening a new poll")

            snapshot = self._commit(LedgerSnapshot(
                voting_id=voting_id,
                tally=current.tally,
                spent=current.spent,
                state=LedgerState.OPEN,
            ))
            logger.info(f"Ledger opened with votingID {voting_id}")
            return snapshot

    def record_vote(self, voting_id: int, vote: int, nullifier: int) -> LedgerSnapshot:
        """Atomically check the votingID and nullifier, then count the vote"""
        if not isinstance(vote, int) or isinstance(vote, bool) or vote < 0:
            raise InvalidVote(f"Vote must be a non-negative integer, got {vote!r}")

        with self._lock:
            current = self._snapshot

            if current.state is LedgerState.CLOSED:
                raise LedgerClosed("Voting is closed")
            if current.voting_id is None:
                raise LedgerStateError("Ledger has no votingID; open it first")
            if voting_id != current.voting_id:
                raise RootMismatch(current.voting_id, voting_id)
            if nullifier in current.spent:
                raise AlreadySpent(nullifier)

            tally = dict(current.tally)
            tally[vote] = tally.get(vote, 0) + 1

            snapshot = self._commit(LedgerSnapshot(
                voting_id=current.voting_id,
                tally=MappingProxyType(tally),
                spent=current.spent | {nullifier},
                state=current.state,
            ))

        logger.debug(f"Recorded vote, {snapshot.total_votes} total")
        return snapshot

    def close(self) -> LedgerSnapshot:
        with self._lock:
            current = self._snapshot
            if current.state is LedgerState.CLOSED:
                return current
            snapshot = self._commit(LedgerSnapshot(
                voting_id=current.voting_id,
                tally=current.tally,
                spent=current.spent,
                state=LedgerState.CLOSED,
            ))
        logger.info(f"Ledger closed with {snapshot.total_votes} votes")
        return snapshot

    def reset(self) -> LedgerSnapshot:
        """Clear tally, nullifiers and votingID; the ledger is open again"""
        with self._lock:
            snapshot = self._commit(LedgerSnapshot())
        logger.info("Ledger reset")
        return snapshot

    def is_spent(self, nullifier: int) -> bool:
        with self._lock:
            return nullifier in self._snapshot.spent

    def snapshot(self) -> LedgerSnapshot:
        with self._lock:
            return self._snapshot

    @property
    def voting_id(self) -> Optional[int]:
        return self.snapshot().voting_id

    @property
    def tally(self) -> Dict[int, int]:
        return dict(self.snapshot().tally)

    @property
    def state(self) -> LedgerState:
        return self.snapshot().state

    @property
    def spent_count(self) -> int:
        return len(self.snapshot().spent)

    def __repr__(self) -> str:
        snapshot = self.snapshot()
        return (f"VotingLedger(state={snapshot.state.value}, "
                f"votes={snapshot.total_votes}, votingID={snapshot.voting_id})")
