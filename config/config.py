import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

logger = logging.getLogger(__name__)

RELAY_TOKEN_ENV = "ZKV_RELAY_TOKEN"


@dataclass
class PollConfig:
    # None pads to the next power of two; an int fixes the circuit depth
    tree_depth: Optional[int] = None
    vote_options: List[int] = field(default_factory=lambda: [0, 1])
    max_concurrent_submissions: int = 10

    def __post_init__(self):
        if self.tree_depth is not None and self.tree_depth < 0:
            raise ValueError(f"tree_depth must be non-negative, got {self.tree_depth}")
        if not self.vote_options:
            raise ValueError("vote_options must not be empty")
        if any(not isinstance(v, int) or isinstance(v, bool) or v < 0 for v in self.vote_options):
            raise ValueError(f"vote_options must be non-negative integers: {self.vote_options}")
        if self.max_concurrent_submissions < 1:
            raise ValueError("max_concurrent_submissions must be at least 1")


@dataclass
class ProverConfig:
    wasm_path: Path = field(default_factory=lambda: Path(
        "circuit/setup/circuit_js/circuit.wasm"))
    zkey_path: Path = field(default_factory=lambda: Path(
        "circuit/setup/circuit_final.zkey"))
    snarkjs_bin: str = "snarkjs"
    proof_timeout: float = 60.0
    max_proof_attempts: int = 3

    def __post_init__(self):
        self.wasm_path = Path(self.wasm_path)
        self.zkey_path = Path(self.zkey_path)
        if self.max_proof_attempts < 1:
            raise ValueError("max_proof_attempts must be at least 1")


@dataclass
class VerifierConfig:
    mode: str = "local"
    vkey_path: Path = field(default_factory=lambda: Path(
        "circuit/setup/verification_key.json"))
    snarkjs_bin: str = "snarkjs"
    relay_url: str = "http://localhost:8080"
    relay_token: Optional[str] = None
    verification_timeout: float = 120.0
    poll_interval: float = 2.0

    def __post_init__(self):
        self.vkey_path = Path(self.vkey_path)
        if self.mode not in ("local", "relay"):
            raise ValueError(f"Unknown verifier mode: {self.mode}")
        if self.relay_token is None:
            self.relay_token = os.environ.get(RELAY_TOKEN_ENV)


@dataclass
class SystemConfig:
    poll: PollConfig = field(default_factory=PollConfig)
    prover: ProverConfig = field(default_factory=ProverConfig)
    verifier: VerifierConfig = field(default_factory=VerifierConfig)

    registry_path: Path = field(default_factory=lambda: Path("data/voters.json"))
    ledger_path: Path = field(default_factory=lambda: Path("data/ledger.json"))
    mapping_path: Path = field(default_factory=lambda: Path("data/voterMapping.json"))
    log_dir: Path = field(default_factory=lambda: Path("logs"))
    enable_debug_mode: bool = False

    def __post_init__(self):
        self.registry_path = Path(self.registry_path)
        self.ledger_path = Path(self.ledger_path)
        self.mapping_path = Path(self.mapping_path)
        self.log_dir = Path(self.log_dir)


def load_config(config_path: Optional[Path] = None) -> SystemConfig:
    """Load configuration from file or return default"""
    if config_path is None:
        config_path = Path("config.yaml")
    config_path = Path(config_path)

    if not config_path.exists():
        return SystemConfig()

    try:
        with open(config_path, 'r') as f:
            config_data = yaml.safe_load(f) or {}

        poll_data = config_data.get('poll', {})
        poll_config = PollConfig(
            tree_depth=poll_data.get('tree_depth'),
            vote_options=list(poll_data.get('vote_options', [0, 1])),
            max_concurrent_submissions=poll_data.get('max_concurrent_submissions', 10)
        )

        prover_data = config_data.get('prover', {})
        prover_config = ProverConfig(
            wasm_path=Path(prover_data.get(
                'wasm_path', 'circuit/setup/circuit_js/circuit.wasm')),
            zkey_path=Path(prover_data.get(
                'zkey_path', 'circuit/setup/circuit_final.zkey')),
            snarkjs_bin=prover_data.get('snarkjs_bin', 'snarkjs'),
            proof_timeout=float(prover_data.get('proof_timeout', 60.0)),
            max_proof_attempts=prover_data.get('max_proof_attempts', 3)
        )

        verifier_data = config_data.get('verifier', {})
        verifier_config = VerifierConfig(
            mode=verifier_data.get('mode', 'local'),
            vkey_path=Path(verifier_data.get(
                'vkey_path', 'circuit/setup/verification_key.json')),
            snarkjs_bin=verifier_data.get('snarkjs_bin', 'snarkjs'),
            relay_url=verifier_data.get('relay_url', 'http://localhost:8080'),
            verification_timeout=float(verifier_data.get('verification_timeout', 120.0)),
            poll_interval=float(verifier_data.get('poll_interval', 2.0))
        )

        return SystemConfig(
            poll=poll_config,
            prover=prover_config,
            verifier=verifier_config,
            registry_path=Path(config_data.get('registry_path', 'data/voters.json')),
            ledger_path=Path(config_data.get('ledger_path', 'data/ledger.json')),
            mapping_path=Path(config_data.get('mapping_path', 'data/voterMapping.json')),
            log_dir=Path(config_data.get('log_dir', 'logs')),
            enable_debug_mode=config_data.get('enable_debug_mode', False)
        )
    except (OSError, yaml.YAMLError, AttributeError, TypeError, ValueError) as e:
        logger.warning(f"Could not load config file {config_path}: {e}")
        logger.warning("Using default configuration")

    return SystemConfig()


def config_to_dict(config: SystemConfig) -> Dict[str, Any]:
    # relay_token is read from the environment and never written to disk
    return {
        'poll': {
            'tree_depth': config.poll.tree_depth,
            'vote_options': list(config.poll.vote_options),
            'max_concurrent_submissions': config.poll.max_concurrent_submissions
        },
        'prover': {
            'wasm_path': str(config.prover.wasm_path),
            'zkey_path': str(config.prover.zkey_path),
            'snarkjs_bin': config.prover.snarkjs_bin,
            'proof_timeout': config.prover.proof_timeout,
            'max_proof_attempts': config.prover.max_proof_attempts
        },
        'verifier': {
            'mode': config.verifier.mode,
            'vkey_path': str(config.verifier.vkey_path),
            'snarkjs_bin': config.verifier.snarkjs_bin,
            'relay_url': config.verifier.relay_url,
            'verification_timeout': config.verifier.verification_timeout,
            'poll_interval': config.verifier.poll_interval
        },
        'registry_path': str(config.registry_path),
        'ledger_path': str(config.ledger_path),
        'mapping_path': str(config.mapping_path),
        'log_dir': str(config.log_dir),
        'enable_debug_mode': config.enable_debug_mode
    }


def save_config(config: SystemConfig, config_path: Optional[Path] = None):
    """Save configuration to YAML file"""
    if config_path is None:
        config_path = Path("config.yaml")

    try:
        with open(config_path, 'w') as f:
            yaml.dump(config_to_dict(config), f, default_flow_style=False)
    except OSError as e:
        logger.warning(f"Could not save config file {config_path}: {e}")
