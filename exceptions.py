"""
Error taxonomy for the anonymous voting protocol.

Every failure a submission can hit maps to one of five families so that the
orchestration layer can report it without affecting other voters:

- InputError: rejected before any proof work (unknown voter, bad vote, bad index)
- ProtocolError: rejected by the ledger with no state change
- OracleError: local proving failure, retryable with fresh randomness
- VerificationError: verification service failure, rejection or timeout
- PersistenceError: the ledger snapshot could not be written or read
"""


class VotingError(Exception):
    """Base exception for all voting protocol errors"""
    pass


# ============================================================================
# INPUT ERRORS
# ============================================================================


class InputError(VotingError):
    """Malformed input rejected before any proof work"""
    pass


class UnknownVoter(InputError):
    """Identity is not part of the voter registry"""
    pass


class DuplicateVoter(InputError):
    """Identity appears more than once after normalization"""
    pass


class InvalidVote(InputError):
    """Vote value is not one of the poll options"""
    pass


class IndexOutOfRange(InputError, IndexError):
    """Leaf index outside [0, leaf_count)"""
    pass


# ============================================================================
# PROTOCOL ERRORS
# ============================================================================


class ProtocolError(VotingError):
    """Submission rejected by ledger rules; ledger state unchanged"""
    pass


class RootMismatch(ProtocolError):
    """Public root of a submission differs from the ledger votingID"""

    def __init__(self, expected, actual):
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"votingID mismatch: ledger has {expected}, submission has {actual}")


class AlreadySpent(ProtocolError):
    """Nullifier has already been recorded"""

    def __init__(self, nullifier):
        self.nullifier = nullifier
        super().__init__(f"Nullifier already spent: {nullifier}")


class LedgerClosed(ProtocolError):
    """Ledger no longer accepts votes"""
    pass


class LedgerStateError(ProtocolError):
    """Illegal ledger lifecycle transition"""
    pass


# ============================================================================
# ORACLE / VERIFICATION / PERSISTENCE ERRORS
# ============================================================================


class OracleError(VotingError):
    """Local proof generation failed"""
    pass


class ProofInputMismatch(OracleError):
    """Proof inputs are inconsistent with the tree or commitment"""
    pass


class VerificationError(VotingError):
    """Verification service unreachable, failed or rejected the proof"""
    pass


class VerificationRejected(VerificationError):
    """Verification service rejected the proof"""
    pass


class VerificationTimeout(VerificationError):
    """Verification did not complete within the configured timeout"""
    pass


class PersistenceError(VotingError):
    """Ledger snapshot could not be written; the vote may not be durable"""
    pass


class LedgerCorruptedError(PersistenceError):
    """Persisted ledger snapshot is unreadable; fatal at startup"""
    pass


__all__ = [
    'VotingError',
    'InputError',
    'UnknownVoter',
    'DuplicateVoter',
    'InvalidVote',
    'IndexOutOfRange',
    'ProtocolError',
    'RootMismatch',
    'AlreadySpent',
    'LedgerClosed',
    'LedgerStateError',
    'OracleError',
    'ProofInputMismatch',
    'VerificationError',
    'VerificationRejected',
    'VerificationTimeout',
    'PersistenceError',
    'LedgerCorruptedError',
]
