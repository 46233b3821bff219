"""Voter registry and padding policy."""

from .voter_registry import VoterRegistry, load_registry, next_power_of_two, normalize_identity

__all__ = ['VoterRegistry', 'load_registry', 'next_power_of_two', 'normalize_identity']
