"""Merkle membership tree over field elements."""

from .field_hash import (
    FIELD_PRIME,
    FieldHasher,
    default_hasher,
    is_field_element,
    identity_to_field,
    parse_field_element,
)
from .merkle_tree import MerkleTree, MerkleProof, is_power_of_two

__all__ = [
    'FIELD_PRIME',
    'FieldHasher',
    'default_hasher',
    'is_field_element',
    'identity_to_field',
    'parse_field_element',
    'MerkleTree',
    'MerkleProof',
    'is_power_of_two',
]
