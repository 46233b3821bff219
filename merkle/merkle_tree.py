"""
Merkle Membership Tree
======================
Perfect binary tree over the padded voter leaves. The tree is an immutable
value: every level is stored as a tuple, ``root()`` and ``proof(index)`` are pure
reads, and the hash callables are injected at build time.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Sequence, Tuple

from exceptions import IndexOutOfRange, InputError
from merkle.field_hash import LeafHash, NodeHash, is_field_element, parse_field_element

logger = logging.getLogger(__name__)


def is_power_of_two(n: int) -> bool:
    return n > 0 and (n & (n - 1)) == 0


@dataclass(frozen=True)
class MerkleProof:
    """Membership proof for one leaf.

    ``path`` holds one direction bit per level (0 when the running node is the
    left child, 1 when it is the right child). ``lemma`` starts with the leaf
    hash, continues with one sibling per level and ends with the root, so
    ``len(lemma) == len(path) + 2``.
    """
    leaf_index: int
    path: Tuple[int, ...]
    lemma: Tuple[int, ...]
    node_hash: NodeHash = field(repr=False, compare=False)

    def __post_init__(self):
        if len(self.lemma) != len(self.path) + 2:
            raise InputError(
                f"Lemma length {len(self.lemma)} does not match path length {len(self.path)}")
        if any(bit not in (0, 1) for bit in self.path):
            raise InputError("Path direction bits must be 0 or 1")
        if self.leaf_index < 0 or self.leaf_index >= (1 << len(self.path)):
            raise IndexOutOfRange(
                f"Leaf index {self.leaf_index} does not fit a path of depth {len(self.path)}")

    @property
    def depth(self) -> int:
        return len(self.path)

    @property
    def leaf_hash(self) -> int:
        return self.lemma[0]

    @property
    def root(self) -> int:
        return self.lemma[-1]

    @property
    def siblings(self) -> Tuple[int, ...]:
        return self.lemma[1:-1]

    def recompute_root(self) -> int:
        """Fold from the leaf hash up to the root"""
        current = self.lemma[0]
        for level, direction in enumerate(self.path):
            sibling = self.lemma[level + 1]
            if direction == 0:
                current = self.node_hash(current, sibling)
            else:
                current = self.node_hash(sibling, current)
        return current

    def verify(self, root: int) -> bool:
        """Check the proof folds to ``root`` and carries it as its last entry"""
        return self.root == root and self.recompute_root() == root

    def to_dict(self) -> Dict[str, Any]:
        return {
            'leafIndex': self.leaf_index,
            'path': list(self.path),
            'lemma': [str(x) for x in self.lemma],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], node_hash: NodeHash) -> 'MerkleProof':
        try:
            return cls(
                leaf_index=int(data['leafIndex']),
                path=tuple(int(bit) for bit in data['path']),
                lemma=tuple(parse_field_element(x) for x in data['lemma']),
                node_hash=node_hash,
            )
        except (KeyError, TypeError, ValueError) as e:
            raise InputError(f"Malformed Merkle proof: {e}") from e


class MerkleTree:
    """Immutable perfect binary Merkle tree"""

    def __init__(self, leaves: Sequence[int], levels: Sequence[Sequence[int]], node_hash: NodeHash):
        # Use MerkleTree.build; this constructor trusts its arguments
        self._leaves: Tuple[int, ...] = tuple(leaves)
        self._levels: Tuple[Tuple[int, ...], ...] = tuple(tuple(level) for level in levels)
        self._node_hash = node_hash

    @classmethod
    def build(cls, leaves: Sequence[int], leaf_hash: LeafHash, node_hash: NodeHash) -> 'MerkleTree':
        """Hash the leaves and pair nodes level by level up to the root.

        The leaf count must already be a power of two; padding is the
        registry's job.
        """
        leaves = list(leaves)
        if not leaves:
            raise InputError("Cannot build a Merkle tree without leaves")
        if not is_power_of_two(len(leaves)):
            raise InputError(
                f"Leaf count {len(leaves)} is not a power of two; pad the registry first")
        for i, leaf in enumerate(leaves):
            if not is_field_element(leaf):
                raise InputError(f"Leaf {i} is not a field element: {leaf!r}")

        current = [leaf_hash(leaf) for leaf in leaves]
        levels: List[List[int]] = [current]

        while len(current) > 1:
            next_level = []
            for i in range(0, len(current), 2):
                left = current[i]
                # odd width: lone trailing node pairs with itself
                right = current[i + 1] if i + 1 < len(current) else left
                next_level.append(node_hash(left, right))
            levels.append(next_level)
            current = next_level

        tree = cls(leaves, levels, node_hash)
        logger.debug(f"Built Merkle tree: {len(leaves)} leaves, depth {tree.depth}")
        return tree

    @property
    def leaves(self) -> Tuple[int, ...]:
        return self._leaves

    @property
    def levels(self) -> Tuple[Tuple[int, ...], ...]:
        return self._levels

    @property
    def leaf_count(self) -> int:
        return len(self._leaves)

    @property
    def depth(self) -> int:
        return len(self._levels) - 1

    @property
    def node_hash(self) -> NodeHash:
        return self._node_hash

    def root(self) -> int:
        return self._levels[-1][0]

    def node(self, level: int, position: int) -> int:
        if level < 0 or level >= len(self._levels):
            raise IndexOutOfRange(f"Level {level} out of range for depth {self.depth}")
        row = self._levels[level]
        if position < 0 or position >= len(row):
            raise IndexOutOfRange(f"Position {position} out of range at level {level}")
        return row[position]

    def proof(self, index: int) -> MerkleProof:
        """Build the membership proof for leaf ``index``"""
        if not isinstance(index, int) or isinstance(index, bool):
            raise InputError(f"Leaf index must be an integer, got {index!r}")
        if index < 0 or index >= self.leaf_count:
            raise IndexOutOfRange(
                f"Leaf index {index} out of range [0, {self.leaf_count})")

        path = []
        lemma = [self._levels[0][index]]
        position = index

        for level in self._levels[:-1]:
            is_left = position % 2 == 0
            sibling_position = position + 1 if is_left else position - 1
            if sibling_position >= len(level):
                sibling_position = position

            path.append(0 if is_left else 1)
            lemma.append(level[sibling_position])
            position //= 2

        lemma.append(self.root())

        return MerkleProof(
            leaf_index=index,
            path=tuple(path),
            lemma=tuple(lemma),
            node_hash=self._node_hash,
        )

    def verify_proof(self, proof: MerkleProof) -> bool:
        return proof.verify(self.root())

    def __len__(self) -> int:
        return self.leaf_count

    def __repr__(self) -> str:
        return f"MerkleTree(leaves={self.leaf_count}, depth={self.depth}, root={self.root()})"
