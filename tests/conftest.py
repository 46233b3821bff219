import asyncio
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from config.config import PollConfig  # noqa: E402
from ledger.voting_ledger import JsonLedgerStore, VotingLedger  # noqa: E402
from merkle.field_hash import default_hasher  # noqa: E402
from registry.voter_registry import VoterRegistry  # noqa: E402
from voting_protocol import VotingPoll  # noqa: E402
from zk.commitments import ProofInputs  # noqa: E402
from zk.verification import VerificationReceipt, VerificationService, VerificationStatus  # noqa: E402
from zk.zk_proofs import ProofArtifact, ProofOracle  # noqa: E402
from exceptions import OracleError  # noqa: E402


class FakeProofOracle(ProofOracle):
    """Echoes the expected public signals without running a circuit"""

    def __init__(self, failures: int = 0, tamper: bool = False):
        self.failures = failures
        self.tamper = tamper
        self.calls: List[ProofInputs] = []

    async def prove(self, inputs: ProofInputs) -> ProofArtifact:
        self.calls.append(inputs)
        if self.failures > 0:
            self.failures -= 1
            raise OracleError("witness generation failed")

        signals = inputs.expected_signals().to_list()
        if self.tamper:
            signals[2] = str(inputs.commitment + 1)

        return ProofArtifact(
            proof={'pi_a': ['1', '2', '1'], 'pi_b': [], 'pi_c': [],
                   'protocol': 'groth16', 'curve': 'bn128'},
            public_signals=signals,
            generation_time=0.0,
        )


class FakeVerifier(VerificationService):
    """Accepts everything unless told otherwise"""

    def __init__(self, accept: bool = True, delay: float = 0.0,
                 error: Optional[Exception] = None):
        self.accept = accept
        self.delay = delay
        self.error = error
        self.calls = 0
        self.cancelled = False

    async def verify(self, proof: Dict[str, Any], public_signals: List[str]) -> VerificationReceipt:
        self.calls += 1
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        if self.error is not None:
            raise self.error
        if not self.accept:
            return VerificationReceipt(accepted=False, status=VerificationStatus.REJECTED)
        return VerificationReceipt(
            accepted=True,
            status=VerificationStatus.FINALIZED,
            attestation_id="42",
            inclusion_proof={'proof': ['0xabc'], 'numberOfLeaves': 4, 'leafIndex': 1},
        )


VOTERS = ["0xA", "0xB", "0xC", "0xD"]


@pytest.fixture
def registry():
    return VoterRegistry(VOTERS)


@pytest.fixture
def hasher():
    return default_hasher


@pytest.fixture
def ledger_path(tmp_path):
    return tmp_path / "votingResults.json"


@pytest.fixture
def make_poll(registry, ledger_path):
    def _make(prover=None, verifier=None, ledger=None, config=None, **kwargs) -> VotingPoll:
        poll = VotingPoll(
            registry=registry,
            prover=prover or FakeProofOracle(),
            verifier=verifier or FakeVerifier(),
            ledger=ledger or VotingLedger(JsonLedgerStore(ledger_path)),
            config=config or PollConfig(),
            **kwargs,
        )
        poll.open()
        return poll
    return _make
