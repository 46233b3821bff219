"""
Zero-Knowledge Proof Oracle
===========================
Boundary to the external Groth16 prover. The voting circuit itself is built
and set up elsewhere; this module hands it a validated witness and reads back
the proof and public signals.

SnarkjsProofOracle drives ``snarkjs groth16 fullprove`` in a subprocess with a
hard timeout so a stuck prover never holds up other voters.
"""

import asyncio
import hashlib
import json
import logging
import tempfile
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

from config.config import ProverConfig
from exceptions import OracleError
from merkle.field_hash import FIELD_PRIME
from zk.commitments import MIN_PUBLIC_SIGNALS, ProofInputs, PublicSignals, parse_public_signals

logger = logging.getLogger(__name__)


@dataclass
class ProofArtifact:
    """Container for an opaque proof blob and its public signals"""
    proof: Dict[str, Any]
    public_signals: List[str]
    generation_time: float
    circuit_name: str = "voting"
    verification_key_hash: Optional[str] = None
    timestamp: float = field(default_factory=time.time)

    @property
    def signals(self) -> PublicSignals:
        return parse_public_signals(self.public_signals)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'proof': self.proof,
            'publicSignals': list(self.public_signals),
            'circuit': self.circuit_name,
            'generationTime': self.generation_time,
            'timestamp': self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ProofArtifact':
        return cls(
            proof=data['proof'],
            public_signals=[str(s) for s in data['publicSignals']],
            generation_time=float(data.get('generationTime', 0.0)),
            circuit_name=data.get('circuit', 'voting'),
            timestamp=float(data.get('timestamp', time.time())),
        )


class ProofOracle(ABC):
    """Turns validated proof inputs into a proof plus public signals"""

    @abstractmethod
    async def prove(self, inputs: ProofInputs) -> ProofArtifact:
        ...


async def run_snarkjs(cmd: Sequence[str], timeout: float) -> Tuple[int, str, str]:
    """Run a snarkjs command without blocking the event loop.

    Returns ``(returncode, stdout, stderr)``. The process is killed when the
    timeout expires or the awaiting task is cancelled.
    """
    try:
        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError as e:
        raise OracleError(f"Command not found: {cmd[0]}") from e

    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except (asyncio.TimeoutError, asyncio.CancelledError):
        process.kill()
        await process.wait()
        raise

    return process.returncode, stdout.decode(errors='replace'), stderr.decode(errors='replace')


class SnarkjsProofOracle(ProofOracle):
    """Groth16 prover backed by the snarkjs CLI"""

    def __init__(self, config: Optional[ProverConfig] = None):
        self.config = config or ProverConfig()
        self._zkey_hash: Optional[str] = None

    def _sanitize_path(self, path: Path) -> Path:
        """Resolve a circuit artifact path and make sure it exists"""
        resolved = Path(path).resolve()
        if not resolved.is_file():
            raise OracleError(f"Circuit artifact not found: {resolved}")
        return resolved

    def _hash_zkey(self, zkey_file: Path) -> str:
        if self._zkey_hash is None:
            self._zkey_hash = hashlib.sha256(zkey_file.read_bytes()).hexdigest()
        return self._zkey_hash

    async def prove(self, inputs: ProofInputs) -> ProofArtifact:
        start_time = time.time()

        wasm_file = self._sanitize_path(self.config.wasm_path)
        zkey_file = self._sanitize_path(self.config.zkey_path)

        with tempfile.TemporaryDirectory() as temp_dir:
            temp_path = Path(temp_dir)

            # Witness holds the ticket randomness; it only lives in the temp dir
            input_file = temp_path / "input.json"
            input_file.write_text(json.dumps(inputs.to_witness()))

            proof_file = temp_path / "proof.json"
            public_file = temp_path / "public.json"

            cmd = [
                self.config.snarkjs_bin, 'groth16', 'fullprove',
                str(input_file),
                str(wasm_file),
                str(zkey_file),
                str(proof_file),
                str(public_file),
            ]

            try:
                returncode, _, stderr = await run_snarkjs(cmd, self.config.proof_timeout)
            except asyncio.TimeoutError as e:
                raise OracleError(
                    f"Proof generation timed out after {self.config.proof_timeout}s") from e

            if returncode != 0:
                raise OracleError(f"Proof generation failed: {stderr.strip()}")

            try:
                proof = json.loads(proof_file.read_text())
                public_signals = json.loads(public_file.read_text())
            except (OSError, json.JSONDecodeError) as e:
                raise OracleError(f"Unreadable prover output: {e}") from e

        if not self._validate_public_signals(public_signals):
            raise OracleError("Invalid public signals")

        generation_time = time.time() - start_time
        logger.info(f"Generated voting proof in {generation_time:.2f}s")

        return ProofArtifact(
            proof=self._normalize_proof(proof),
            public_signals=[str(s) for s in public_signals],
            generation_time=generation_time,
            circuit_name=wasm_file.stem,
            verification_key_hash=self._hash_zkey(zkey_file),
        )

    def _normalize_proof(self, proof: Dict[str, Any]) -> Dict[str, Any]:
        """Check the proof is a bn128 Groth16 proof with decimal coordinates"""
        p = dict(proof)

        for key in ('pi_a', 'pi_b', 'pi_c'):
            if key not in p:
                raise OracleError(f"Proof is missing {key}")

        if p.setdefault('protocol', 'groth16') != 'groth16':
            raise OracleError(f"Invalid protocol: {p['protocol']}")
        if p.setdefault('curve', 'bn128') != 'bn128':
            raise OracleError(f"Invalid curve: {p['curve']}")

        return p

    def _validate_public_signals(self, signals: Any) -> bool:
        """Public signals are ``[root, nullifier, commitment, ...]`` in field"""
        if not isinstance(signals, list) or len(signals) < MIN_PUBLIC_SIGNALS:
            return False

        for i, signal in enumerate(signals):
            try:
                signal_int = int(signal)
            except (TypeError, ValueError):
                logger.error(f"Signal {i} is not an integer: {signal!r}")
                return False
            if signal_int < 0 or signal_int >= FIELD_PRIME:
                logger.error(f"Signal {i} out of field bounds: {signal_int}")
                return False

        return True
