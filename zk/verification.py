"""
Proof verification services.

A verifier answers one question: did this proof and these public signals pass?
Both adapters are asynchronous and bounded by ``verify_with_timeout`` so a
stalled verifier fails one submission instead of blocking the poll.
"""

import asyncio
import json
import logging
import tempfile
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

import requests

from config.config import VerifierConfig
from exceptions import OracleError, VerificationError, VerificationTimeout
from zk.zk_proofs import run_snarkjs

logger = logging.getLogger(__name__)


class VerificationStatus(Enum):
    PENDING = "pending"
    INCLUDED = "included"
    FINALIZED = "finalized"
    REJECTED = "rejected"


@dataclass
class VerificationReceipt:
    """Outcome of one verification.

    ``inclusion_proof`` is whatever the attestation network returned; it is
    relayed to the voter untouched and never interpreted here.
    """
    accepted: bool
    status: VerificationStatus
    attestation_id: Optional[str] = None
    inclusion_proof: Optional[Any] = None
    verification_time: float = 0.0
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'accepted': self.accepted,
            'status': self.status.value,
            'attestationId': self.attestation_id,
            'proofOfInclusion': self.inclusion_proof,
            'verificationTime': self.verification_time,
        }


class VerificationService(ABC):

    @abstractmethod
    async def verify(self, proof: Dict[str, Any], public_signals: List[str]) -> VerificationReceipt:
        """Verify a proof; raise VerificationError when the service itself fails"""
        ...

    async def close(self):
        pass


async def verify_with_timeout(service: VerificationService,
                              proof: Dict[str, Any],
                              public_signals: List[str],
                              timeout: float) -> VerificationReceipt:
    """Await ``service.verify`` for at most ``timeout`` seconds.

    Cancellation of the caller propagates to the service call.
    """
    try:
        return await asyncio.wait_for(service.verify(proof, public_signals), timeout=timeout)
    except asyncio.TimeoutError as e:
        raise VerificationTimeout(f"Verification timed out after {timeout}s") from e


class SnarkjsVerificationService(VerificationService):
    """Local Groth16 verification with ``snarkjs groth16 verify``"""

    def __init__(self, config: Optional[VerifierConfig] = None):
        self.config = config or VerifierConfig()
        self.verification_count = 0

    async def verify(self, proof: Dict[str, Any], public_signals: List[str]) -> VerificationReceipt:
        start_time = time.time()

        vkey_file = Path(self.config.vkey_path).resolve()
        if not vkey_file.is_file():
            raise VerificationError(f"Verification key not found: {vkey_file}")

        with tempfile.TemporaryDirectory() as temp_dir:
            temp_path = Path(temp_dir)

            proof_file = temp_path / "proof.json"
            proof_file.write_text(json.dumps(proof))

            public_file = temp_path / "public.json"
            public_file.write_text(json.dumps([str(s) for s in public_signals]))

            cmd = [
                self.config.snarkjs_bin, 'groth16', 'verify',
                str(vkey_file),
                str(public_file),
                str(proof_file),
            ]

            try:
                returncode, stdout, stderr = await run_snarkjs(
                    cmd, self.config.verification_timeout)
            except asyncio.TimeoutError as e:
                raise VerificationTimeout(
                    f"snarkjs verify timed out after {self.config.verification_timeout}s") from e
            except OracleError as e:
                raise VerificationError(str(e)) from e

        self.verification_count += 1
        verification_time = time.time() - start_time

        # snarkjs exits non-zero for an invalid proof as well as for tool errors
        if "OK!" in stdout:
            logger.info(f"Proof verified locally in {verification_time:.2f}s")
            return VerificationReceipt(
                accepted=True,
                status=VerificationStatus.FINALIZED,
                verification_time=verification_time,
            )

        if "Invalid proof" in stdout or "Invalid proof" in stderr:
            logger.warning("Local verifier rejected proof")
            return VerificationReceipt(
                accepted=False,
                status=VerificationStatus.REJECTED,
                verification_time=verification_time,
                details={'output': stdout.strip()},
            )

        raise VerificationError(
            f"snarkjs verify failed (exit {returncode}): {stderr.strip() or stdout.strip()}")


class RelayVerificationService(VerificationService):
    """Verification through an HTTP relay in front of an attestation network.

    The relay accepts ``POST /verify`` and reports progress on
    ``GET /jobs/{jobId}``. A job is accepted once it is finalized and carries
    an attestation id; ``included`` is still in flight.
    """

    def __init__(self, config: Optional[VerifierConfig] = None,
                 session: Optional[requests.Session] = None,
                 verification_key: Optional[Dict[str, Any]] = None):
        self.config = config or VerifierConfig(mode="relay")
        self.session = session or requests.Session()
        self._verification_key = verification_key
        if self.config.relay_token:
            self.session.headers['Authorization'] = f"Bearer {self.config.relay_token}"

    @property
    def verification_key(self) -> Dict[str, Any]:
        if self._verification_key is None:
            try:
                self._verification_key = json.loads(Path(self.config.vkey_path).read_text())
            except (OSError, json.JSONDecodeError) as e:
                raise VerificationError(f"Cannot load verification key: {e}") from e
        return self._verification_key

    def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        url = f"{self.config.relay_url.rstrip('/')}/{path.lstrip('/')}"
        try:
            response = self.session.request(
                method, url, timeout=self.config.verification_timeout, **kwargs)
            response.raise_for_status()
            return response.json()
        except requests.RequestException as e:
            raise VerificationError(f"Relay request {method} {url} failed: {e}") from e
        except ValueError as e:
            raise VerificationError(f"Relay returned invalid JSON from {url}") from e

    async def verify(self, proof: Dict[str, Any], public_signals: List[str]) -> VerificationReceipt:
        start_time = time.time()

        submitted = await asyncio.to_thread(
            self._request, 'POST', 'verify',
            json={
                'vk': self.verification_key,
                'proof': proof,
                'publicSignals': [str(s) for s in public_signals],
            })

        job_id = submitted.get('jobId')
        if not job_id:
            raise VerificationError(f"Relay did not return a job id: {submitted}")
        logger.info(f"Submitted proof to relay, job {job_id}")

        while True:
            job = await asyncio.to_thread(self._request, 'GET', f"jobs/{job_id}")

            try:
                status = VerificationStatus(job.get('status'))
            except ValueError as e:
                raise VerificationError(f"Unknown relay job status: {job.get('status')!r}") from e

            if status == VerificationStatus.REJECTED:
                logger.warning(f"Relay rejected job {job_id}")
                return VerificationReceipt(
                    accepted=False,
                    status=status,
                    verification_time=time.time() - start_time,
                    details={'jobId': job_id, 'error': job.get('error')},
                )

            if status == VerificationStatus.FINALIZED and job.get('attestationId') is not None:
                verification_time = time.time() - start_time
                logger.info(f"Job {job_id} finalized with attestation "
                            f"{job['attestationId']} in {verification_time:.2f}s")
                return VerificationReceipt(
                    accepted=True,
                    status=status,
                    attestation_id=str(job['attestationId']),
                    inclusion_proof=job.get('proofOfInclusion'),
                    verification_time=verification_time,
                    details={'jobId': job_id},
                )

            logger.debug(f"Job {job_id} is {status.value}")
            await asyncio.sleep(self.config.poll_interval)

    async def close(self):
        self.session.close()


def create_verification_service(config: VerifierConfig) -> VerificationService:
    if config.mode == "relay":
        return RelayVerificationService(config)
    return SnarkjsVerificationService(config)
