"""
Vote commitments, nullifiers and the proof-input contract.

The prover must receive exactly the tuple the membership tree produced. The
checks here run locally before any proof work so a transcription error fails
fast instead of yielding a proof the verifier will reject.
"""

import logging
import secrets
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

from exceptions import InputError, InvalidVote, ProofInputMismatch
from merkle.field_hash import (
    FIELD_PRIME,
    FieldHasher,
    NodeHash,
    default_hasher,
    is_field_element,
    parse_field_element,
)
from registry.voter_registry import encode_identity, normalize_identity

logger = logging.getLogger(__name__)

# Fixed public-signal positions shared by prover, verifier and ledger
SIGNAL_VOTING_ID = 0
SIGNAL_NULLIFIER = 1
SIGNAL_COMMITMENT = 2
MIN_PUBLIC_SIGNALS = 3


@dataclass(frozen=True)
class VoteCommitment:
    """Hiding commitment to a vote; ``randomness`` is the voter's ticket code"""
    vote: int
    randomness: int
    commitment: int


@dataclass(frozen=True)
class PublicSignals:
    voting_id: int
    nullifier: int
    commitment: int
    extra: Tuple[int, ...] = ()

    def to_list(self) -> List[str]:
        return [str(self.voting_id), str(self.nullifier), str(self.commitment)] + [str(x) for x in self.extra]


def parse_public_signals(signals: Sequence[Any]) -> PublicSignals:
    """Read ``[root, nullifier, commitment, ...]`` into typed field elements"""
    if signals is None or len(signals) < MIN_PUBLIC_SIGNALS:
        raise InputError(
            f"Expected at least {MIN_PUBLIC_SIGNALS} public signals, got {0 if signals is None else len(signals)}")
    values = []
    for i, signal in enumerate(signals):
        if not isinstance(signal, (int, str)):
            raise InputError(f"Public signal {i} is not a decimal field element: {signal!r}")
        try:
            values.append(parse_field_element(signal))
        except ValueError as e:
            raise InputError(f"Public signal {i} is not a decimal field element: {e}") from e

    return PublicSignals(
        voting_id=values[SIGNAL_VOTING_ID],
        nullifier=values[SIGNAL_NULLIFIER],
        commitment=values[SIGNAL_COMMITMENT],
        extra=tuple(values[MIN_PUBLIC_SIGNALS:]),
    )


class VoteCommitmentScheme:
    """Derives vote commitments and per-voter nullifiers from one 2-ary hash"""

    def __init__(self, node_hash: Optional[NodeHash] = None):
        self.node_hash = node_hash or default_hasher.node_hash

    @classmethod
    def from_hasher(cls, hasher: FieldHasher) -> 'VoteCommitmentScheme':
        return cls(hasher.node_hash)

    @staticmethod
    def generate_randomness() -> int:
        """Blinding factor from the OS CSPRNG, never zero"""
        return secrets.randbelow(FIELD_PRIME - 1) + 1

    def commit(self, vote: int, randomness: Optional[int] = None) -> VoteCommitment:
        if not is_field_element(vote):
            raise InvalidVote(f"Vote must be a non-negative field integer, got {vote!r}")
        if randomness is None:
            randomness = self.generate_randomness()
        elif not is_field_element(randomness) or randomness == 0:
            raise InputError("Randomness must be a non-zero field element")

        return VoteCommitment(
            vote=vote,
            randomness=randomness,
            commitment=self.node_hash(vote, randomness),
        )

    def open(self, commitment: int, vote: int, randomness: int) -> bool:
        """Check ``commitment`` opens to ``(vote, randomness)``"""
        try:
            return self.node_hash(vote, randomness) == commitment
        except ValueError:
            return False

    def nullifier(self, voting_id: int, voter_identity: str) -> int:
        """One nullifier per (poll, voter); independent of the vote"""
        identity = encode_identity(normalize_identity(voter_identity))
        return self.node_hash(voting_id, identity)


@dataclass(frozen=True)
class ProofInputs:
    """Private and public inputs handed to the proof oracle"""
    root: int
    leaf_index: int
    path: Tuple[int, ...]
    lemma: Tuple[int, ...]
    nullifier: int
    vote: int
    randomness: int
    commitment: int

    @property
    def sibling_path(self) -> Tuple[int, ...]:
        return self.lemma[1:-1]

    def expected_signals(self) -> PublicSignals:
        return PublicSignals(voting_id=self.root, nullifier=self.nullifier, commitment=self.commitment)

    def validate(self, node_hash: NodeHash):
        """Recompute root and commitment; raise ProofInputMismatch on any drift"""
        if len(self.lemma) != len(self.path) + 2:
            raise ProofInputMismatch(
                f"Lemma length {len(self.lemma)} inconsistent with path length {len(self.path)}")

        if self.leaf_index < 0 or self.leaf_index >= (1 << len(self.path)):
            raise ProofInputMismatch(f"Leaf index {self.leaf_index} outside tree of depth {len(self.path)}")

        # path bits must spell out the leaf index, least significant level first
        for level, bit in enumerate(self.path):
            if bit != (self.leaf_index >> level) & 1:
                raise ProofInputMismatch(f"Direction bit {level} disagrees with leaf index {self.leaf_index}")

        if self.lemma[-1] != self.root:
            raise ProofInputMismatch("Lemma does not end with the published root")

        current = self.lemma[0]
        for level, bit in enumerate(self.path):
            sibling = self.lemma[level + 1]
            current = node_hash(current, sibling) if bit == 0 else node_hash(sibling, current)
        if current != self.root:
            raise ProofInputMismatch("Sibling path does not fold to the published root")

        if node_hash(self.vote, self.randomness) != self.commitment:
            raise ProofInputMismatch("Commitment does not open to (vote, randomness)")

        for name in ('nullifier', 'vote', 'randomness', 'commitment'):
            if not is_field_element(getattr(self, name)):
                raise ProofInputMismatch(f"{name} is not a field element")

    def to_witness(self) -> Dict[str, Any]:
        """Circuit input names as consumed by the voting circuit"""
        return {
            "votingID": str(self.root),
            "index": str(self.leaf_index),
            "lemma": [str(x) for x in self.lemma],
            "nullifier": str(self.nullifier),
            "vote": str(self.vote),
            "randomness": str(self.randomness),
            "voteCommitment": str(self.commitment),
        }
