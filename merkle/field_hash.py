"""
Field-element encoding and reference hash for the membership tree.

The tree, nullifier and commitment code only ever see two callables:
``leaf_hash(x)`` and ``node_hash(left, right)``. Production deployments inject a
circuit-compatible permutation (Poseidon over BN254); FieldHasher below is a
SHA-256 based stand-in with the same signature so the protocol runs and can be
tested without a proving toolchain.
"""

import hashlib
from typing import Callable, Iterable, Union

# BN254 scalar field prime
FIELD_PRIME = 21888242871839275222246405745257275088548364400416034343698204186575808495617

LEAF_DOMAIN = b"voting.leaf"
NODE_DOMAIN = b"voting.node"

LeafHash = Callable[[int], int]
NodeHash = Callable[[int, int], int]

FieldLike = Union[int, str]

_HEX_DIGITS = frozenset("0123456789abcdefABCDEF")


def is_field_element(value: int) -> bool:
    """Check value is an integer in [0, p)"""
    return isinstance(value, int) and not isinstance(value, bool) and 0 <= value < FIELD_PRIME


def is_decimal_string(text: str) -> bool:
    """ASCII digits only; ``str.isdigit`` also accepts superscripts and other scripts"""
    return bool(text) and text.isascii() and text.isdigit()


def parse_field_element(value: FieldLike) -> int:
    """Read an integer or a decimal string (snarkjs signals, lemma entries).

    Anything that is not a plain number in ``[0, p)`` raises ValueError.
    """
    if isinstance(value, bool):
        raise ValueError("Booleans are not field elements")

    if isinstance(value, int):
        if not is_field_element(value):
            raise ValueError(f"Value {value} outside field bounds")
        return value

    if not isinstance(value, str):
        raise TypeError(f"Cannot read {type(value).__name__} as field element")

    text = value.strip()
    if not is_decimal_string(text):
        raise ValueError(f"Not a decimal field element: {value!r}")

    number = int(text)
    if number >= FIELD_PRIME:
        raise ValueError(f"Value {text} outside field bounds")
    return number


def identity_to_field(identity: str) -> int:
    """Encode a voter identity as a leaf value.

    ``0x``-prefixed hex identities (account addresses) are read as integers;
    every other identity is hashed with SHA-256 and reduced modulo the field
    prime. Digit strings are hashed too, so ``"10"`` never aliases ``"0xa"``.
    """
    if not isinstance(identity, str):
        raise TypeError(f"Voter identity must be a string, got {type(identity).__name__}")

    text = identity.strip()
    if not text:
        raise ValueError("Empty identity")

    digits = text[2:]
    if text[:2].lower() == "0x" and digits and all(c in _HEX_DIGITS for c in digits):
        number = int(digits, 16)
        if number >= FIELD_PRIME:
            raise ValueError(f"Identity {text} outside field bounds")
        return number

    digest = hashlib.sha256(text.encode("utf-8")).digest()
    return int.from_bytes(digest, "big") % FIELD_PRIME


def _encode(value: int) -> bytes:
    if not is_field_element(value):
        raise ValueError(f"Value {value} outside field bounds")
    return value.to_bytes(32, "big")


class FieldHasher:
    """SHA-256 hash into the BN254 scalar field with domain separation"""

    def __init__(self, leaf_domain: bytes = LEAF_DOMAIN, node_domain: bytes = NODE_DOMAIN):
        if leaf_domain == node_domain:
            raise ValueError("Leaf and node domains must differ")
        self.leaf_domain = leaf_domain
        self.node_domain = node_domain

    def _digest(self, domain: bytes, values: Iterable[int]) -> int:
        h = hashlib.sha256()
        h.update(len(domain).to_bytes(1, "big"))
        h.update(domain)
        for value in values:
            h.update(_encode(value))
        return int.from_bytes(h.digest(), "big") % FIELD_PRIME

    def leaf_hash(self, leaf: int) -> int:
        return self._digest(self.leaf_domain, [leaf])

    def node_hash(self, left: int, right: int) -> int:
        return self._digest(self.node_domain, [left, right])

    def __repr__(self) -> str:
        return f"FieldHasher(leaf_domain={self.leaf_domain!r}, node_domain={self.node_domain!r})"


default_hasher = FieldHasher()
