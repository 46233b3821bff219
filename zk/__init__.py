"""
Zero-knowledge boundary of the voting protocol: vote commitments and
nullifiers, the proof oracle and verification services.
"""

from .commitments import (
    ProofInputs,
    PublicSignals,
    VoteCommitment,
    VoteCommitmentScheme,
    parse_public_signals,
)
from .verification import (
    RelayVerificationService,
    SnarkjsVerificationService,
    VerificationReceipt,
    VerificationService,
    VerificationStatus,
    create_verification_service,
    verify_with_timeout,
)
from .zk_proofs import ProofArtifact, ProofOracle, SnarkjsProofOracle

__all__ = [
    # Commitments
    'VoteCommitment',
    'VoteCommitmentScheme',
    'ProofInputs',
    'PublicSignals',
    'parse_public_signals',

    # Proving
    'ProofArtifact',
    'ProofOracle',
    'SnarkjsProofOracle',

    # Verification
    'VerificationService',
    'VerificationStatus',
    'VerificationReceipt',
    'SnarkjsVerificationService',
    'RelayVerificationService',
    'create_verification_service',
    'verify_with_timeout',
]
