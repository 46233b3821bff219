"""Configuration management for the voting system."""

from .config import (
    PollConfig,
    ProverConfig,
    SystemConfig,
    VerifierConfig,
    config_to_dict,
    load_config,
    save_config,
)

__all__ = [
    'SystemConfig',
    'PollConfig',
    'ProverConfig',
    'VerifierConfig',
    'config_to_dict',
    'load_config',
    'save_config',
]
