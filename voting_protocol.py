#!/usr/bin/env python3
"""
Anonymous Merkle-Membership Voting
==================================
Ties the voter registry, membership tree, commitment scheme, proof oracle,
verification service and ledger into one poll.

A submission passes four gates in order:

1. its public root equals the ledger votingID
2. its nullifier is unspent
3. the verification service accepts the proof (bounded by a timeout)
4. the ledger re-checks 1 and 2 atomically and counts the vote

Gates 1 and 2 run before verification so obviously bad submissions never
reach the verifier; gate 4 closes the race between concurrent submissions.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Sequence, Tuple, TypeVar

from config.config import PollConfig
from exceptions import (
    AlreadySpent,
    InputError,
    InvalidVote,
    LedgerClosed,
    LedgerStateError,
    OracleError,
    ProofInputMismatch,
    RootMismatch,
    VerificationError,
    VerificationRejected,
    VotingError,
)
from ledger.voting_ledger import LedgerState, VotingLedger
from merkle.field_hash import FieldHasher, default_hasher, parse_field_element
from merkle.merkle_tree import MerkleProof, MerkleTree
from registry.voter_registry import VoterRegistry
from utils.utils import PerformanceMonitor
from zk.commitments import ProofInputs, VoteCommitmentScheme, parse_public_signals
from zk.verification import VerificationService, VerificationStatus, verify_with_timeout
from zk.zk_proofs import ProofArtifact, ProofOracle

logger = logging.getLogger(__name__)

T = TypeVar('T')


@dataclass
class VoteTicket:
    """What a voter holds after proving: the proof and the ticket code.

    ``randomness`` is the ticket code. It opens the vote commitment and lets
    the voter find their commitment in the public record later.
    """
    proof: Dict[str, Any]
    public_signals: List[str]
    vote: int
    randomness: int
    commitment: int
    nullifier: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            'proof': self.proof,
            'publicSignals': list(self.public_signals),
            'vote': self.vote,
            'ticket': str(self.randomness),
            'voteCommitment': str(self.commitment),
            'nullifier': str(self.nullifier),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'VoteTicket':
        try:
            return cls(
                proof=data['proof'],
                public_signals=[str(s) for s in data['publicSignals']],
                vote=parse_field_element(data['vote']),
                randomness=parse_field_element(data['ticket']),
                commitment=parse_field_element(data['voteCommitment']),
                nullifier=parse_field_element(data['nullifier']),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise InputError(f"Malformed vote ticket: {e}") from e


@dataclass
class VoteReceipt:
    """Returned for a counted vote"""
    voting_id: int
    nullifier: int
    commitment: int
    status: VerificationStatus
    attestation_id: Optional[str] = None
    inclusion_proof: Optional[Any] = None
    total_votes: int = 0
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'votingID': str(self.voting_id),
            'nullifier': str(self.nullifier),
            'voteCommitment': str(self.commitment),
            'status': self.status.value,
            'attestationId': self.attestation_id,
            'proofOfInclusion': self.inclusion_proof,
            'totalVotes': self.total_votes,
            'timestamp': self.timestamp,
        }


@dataclass
class BallotOutcome:
    """Per-voter result of a batch submission"""
    identity: str
    receipt: Optional[VoteReceipt] = None
    error: Optional[VotingError] = None

    @property
    def accepted(self) -> bool:
        return self.receipt is not None


class SubmissionLimiter:
    """Bounds how many submissions are in flight at once"""

    def __init__(self, max_concurrent: int = 10):
        self.max_concurrent = max_concurrent
        self.semaphore = asyncio.Semaphore(max_concurrent)

    async def run(self, processor: Callable[..., Awaitable[T]], *args) -> T:
        async with self.semaphore:
            return await processor(*args)

    async def process_with_limit(self, items: Sequence[Any],
                                 processor: Callable[[Any], Awaitable[T]]) -> List[T]:
        """Process every item concurrently, at most ``max_concurrent`` at a time"""
        return list(await asyncio.gather(*(self.run(processor, item) for item in items)))


class VotingPoll:
    """One anonymous poll over a fixed voter registry"""

    def __init__(
        self,
        registry: VoterRegistry,
        prover: ProofOracle,
        verifier: VerificationService,
        ledger: Optional[VotingLedger] = None,
        hasher: Optional[FieldHasher] = None,
        config: Optional[PollConfig] = None,
        verification_timeout: float = 120.0,
        max_proof_attempts: int = 3,
    ):
        self.registry = registry
        self.prover = prover
        self.verifier = verifier
        self.ledger = ledger or VotingLedger()
        self.hasher = hasher or default_hasher
        self.config = config or PollConfig()
        self.verification_timeout = verification_timeout
        self.max_proof_attempts = max(1, max_proof_attempts)

        self.scheme = VoteCommitmentScheme.from_hasher(self.hasher)
        self.limiter = SubmissionLimiter(self.config.max_concurrent_submissions)
        self.monitor = PerformanceMonitor()

        self._tree: Optional[MerkleTree] = None
        self.rejected_submissions = 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def open(self) -> int:
        """Build the membership tree and bind its root as the votingID.

        Re-opening against a ledger that already holds the same root resumes
        the poll; a different root raises LedgerStateError.
        """
        with self.monitor.start_operation("tree_build"):
            tree = MerkleTree.build(
                self.registry.leaves(self.config.tree_depth),
                self.hasher.leaf_hash,
                self.hasher.node_hash,
            )

        self.ledger.open(tree.root())
        self._tree = tree
        logger.info(f"Poll open: {len(self.registry)} voters, depth {tree.depth}, "
                    f"votingID {tree.root()}")
        return tree.root()

    def close(self):
        return self.ledger.close()

    def reset(self):
        """Clear tally and nullifiers; the poll must be opened again"""
        self._tree = None
        return self.ledger.reset()

    @property
    def tree(self) -> MerkleTree:
        if self._tree is None:
            raise LedgerStateError("Poll is not open")
        return self._tree

    @property
    def voting_id(self) -> int:
        return self.tree.root()

    # ------------------------------------------------------------------
    # Proving
    # ------------------------------------------------------------------

    def _check_vote(self, vote: int):
        if isinstance(vote, bool) or vote not in self.config.vote_options:
            raise InvalidVote(f"Vote {vote!r} is not one of {self.config.vote_options}")

    def membership_proof(self, identity: str) -> MerkleProof:
        return self.tree.proof(self.registry.require_index(identity))

    def build_proof_inputs(self, identity: str, vote: int,
                           randomness: Optional[int] = None) -> ProofInputs:
        """Assemble and locally validate everything the prover needs"""
        self._check_vote(vote)
        membership = self.membership_proof(identity)
        commitment = self.scheme.commit(vote, randomness)

        inputs = ProofInputs(
            root=self.voting_id,
            leaf_index=membership.leaf_index,
            path=membership.path,
            lemma=membership.lemma,
            nullifier=self.scheme.nullifier(self.voting_id, identity),
            vote=vote,
            randomness=commitment.randomness,
            commitment=commitment.commitment,
        )
        inputs.validate(self.hasher.node_hash)
        return inputs

    def _check_artifact(self, inputs: ProofInputs, artifact: ProofArtifact):
        expected = inputs.expected_signals()
        signals = artifact.signals
        if (signals.voting_id, signals.nullifier, signals.commitment) != \
                (expected.voting_id, expected.nullifier, expected.commitment):
            raise ProofInputMismatch("Prover returned public signals that do not match its inputs")

    async def build_proof(self, identity: str, vote: int,
                          randomness: Optional[int] = None) -> VoteTicket:
        """Produce a ticket, retrying oracle failures with fresh randomness"""
        attempts = 0
        last_error: Optional[OracleError] = None

        while attempts < self.max_proof_attempts:
            inputs = self.build_proof_inputs(identity, vote, randomness if attempts == 0 else None)
            if self.ledger.is_spent(inputs.nullifier):
                raise AlreadySpent(inputs.nullifier)

            attempts += 1
            try:
                with self.monitor.start_operation("proof_generation"):
                    artifact = await self.prover.prove(inputs)
                self._check_artifact(inputs, artifact)
            except OracleError as e:
                last_error = e
                logger.warning(f"Proof attempt {attempts}/{self.max_proof_attempts} failed: {e}")
                continue

            return VoteTicket(
                proof=artifact.proof,
                public_signals=artifact.public_signals,
                vote=vote,
                randomness=inputs.randomness,
                commitment=inputs.commitment,
                nullifier=inputs.nullifier,
            )

        raise OracleError(f"Proof generation failed after {attempts} attempts: {last_error}") \
            from last_error

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    async def submit(self, ticket: VoteTicket) -> VoteReceipt:
        try:
            return await self._submit(ticket)
        except VotingError:
            self.rejected_submissions += 1
            raise

    async def _submit(self, ticket: VoteTicket) -> VoteReceipt:
        signals = parse_public_signals(ticket.public_signals)
        self._check_vote(ticket.vote)
        if not self.scheme.open(signals.commitment, ticket.vote, ticket.randomness):
            raise InvalidVote("Vote does not open the proven commitment")

        if self.ledger.state is LedgerState.CLOSED:
            raise LedgerClosed("Voting is closed")

        voting_id = self.ledger.voting_id
        if signals.voting_id != voting_id:
            logger.warning("Rejected submission with stale or foreign votingID")
            raise RootMismatch(voting_id, signals.voting_id)

        if self.ledger.is_spent(signals.nullifier):
            logger.warning("Rejected submission with spent nullifier")
            raise AlreadySpent(signals.nullifier)

        try:
            with self.monitor.start_operation("verification"):
                receipt = await verify_with_timeout(
                    self.verifier, ticket.proof, ticket.public_signals, self.verification_timeout)
        except VerificationError as e:
            logger.error(f"Verification failed: {e}")
            raise

        if not receipt.accepted:
            logger.warning(f"Verifier rejected proof ({receipt.status.value})")
            raise VerificationRejected(f"Proof rejected by verifier: {receipt.details or receipt.status.value}")

        with self.monitor.start_operation("ledger_write"):
            snapshot = await asyncio.to_thread(
                self.ledger.record_vote, signals.voting_id, ticket.vote, signals.nullifier)

        logger.info(f"Vote counted ({snapshot.total_votes} total)")
        return VoteReceipt(
            voting_id=signals.voting_id,
            nullifier=signals.nullifier,
            commitment=signals.commitment,
            status=receipt.status,
            attestation_id=receipt.attestation_id,
            inclusion_proof=receipt.inclusion_proof,
            total_votes=snapshot.total_votes,
        )

    async def cast_vote(self, identity: str, vote: int) -> VoteReceipt:
        ticket = await self.build_proof(identity, vote)
        return await self.submit(ticket)

    async def cast_votes(self, ballots: Iterable[Tuple[str, int]]) -> List[BallotOutcome]:
        """Cast many votes concurrently; one voter's failure never affects another"""

        async def process(ballot: Tuple[str, int]) -> BallotOutcome:
            identity, vote = ballot
            try:
                return BallotOutcome(identity, receipt=await self.cast_vote(identity, vote))
            except VotingError as e:
                logger.warning(f"Ballot rejected: {type(e).__name__}: {e}")
                return BallotOutcome(identity, error=e)

        outcomes = await self.limiter.process_with_limit(list(ballots), process)
        accepted = sum(1 for o in outcomes if o.accepted)
        logger.info(f"Batch complete: {accepted}/{len(outcomes)} ballots counted")
        return outcomes

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def results(self) -> Dict[str, Any]:
        snapshot = self.ledger.snapshot()
        tally = {option: snapshot.tally.get(option, 0) for option in self.config.vote_options}
        for vote, count in snapshot.tally.items():
            tally.setdefault(vote, count)
        return {
            'votingID': snapshot.voting_id,
            'state': snapshot.state.value,
            'tally': tally,
            'total_votes': snapshot.total_votes,
        }

    def get_system_metrics(self) -> Dict[str, Any]:
        return {
            'registered_voters': len(self.registry),
            'tree_depth': self._tree.depth if self._tree is not None else None,
            'votes_counted': self.ledger.spent_count,
            'rejected_submissions': self.rejected_submissions,
            'ledger_state': self.ledger.state.value,
            'performance': self.monitor.get_summary(),
        }
