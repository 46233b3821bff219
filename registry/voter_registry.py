"""
Voter Registry
==============
Ordered, deduplicated voter identities with a stable identity -> index mapping
and the power-of-two padding policy used to build the membership tree.
"""

import json
import logging
from pathlib import Path
from types import MappingProxyType
from typing import Iterable, List, Mapping, Optional, Tuple, Union

from exceptions import DuplicateVoter, InputError, UnknownVoter
from merkle.field_hash import identity_to_field

logger = logging.getLogger(__name__)


def normalize_identity(identity: str) -> str:
    """Case-normalize an identity so lookups are consistent"""
    if not isinstance(identity, str):
        raise InputError(f"Voter identity must be a string, got {type(identity).__name__}")
    normalized = identity.strip().lower()
    if not normalized:
        raise InputError("Voter identity must not be blank")
    return normalized


def encode_identity(voter: str) -> int:
    """Leaf value of a normalized identity"""
    try:
        return identity_to_field(voter)
    except ValueError as e:
        raise InputError(f"Cannot encode voter identity {voter}: {e}") from e


def next_power_of_two(n: int) -> int:
    if n <= 1:
        return 1
    return 1 << (n - 1).bit_length()


class VoterRegistry:
    """Append-only registry; index of an identity is its list position"""

    def __init__(self, identities: Iterable[str]):
        self._identities: Tuple[str, ...] = ()
        self._index: Mapping[str, int] = MappingProxyType({})
        self._leaf_owners: Mapping[int, str] = MappingProxyType({})

        normalized: List[str] = []
        index = {}
        leaf_owners = {}
        for position, identity in enumerate(identities):
            voter = normalize_identity(identity)
            if voter in index:
                raise DuplicateVoter(
                    f"Duplicate voter {voter} at positions {index[voter]} and {position}")
            # two spellings of one leaf would share a nullifier
            leaf = encode_identity(voter)
            if leaf in leaf_owners:
                raise DuplicateVoter(
                    f"Voter {voter} at position {position} encodes to the same leaf "
                    f"as {leaf_owners[leaf]}")
            index[voter] = position
            leaf_owners[leaf] = voter
            normalized.append(voter)

        if not normalized:
            raise InputError("Voter registry must contain at least one voter")

        self._identities = tuple(normalized)
        self._index = MappingProxyType(index)
        self._leaf_owners = MappingProxyType(leaf_owners)
        logger.info(f"Loaded voter registry with {len(self._identities)} voters")

    @classmethod
    def load(cls, path: Path) -> 'VoterRegistry':
        """Load ``{"voters": [...]}`` from a JSON file"""
        path = Path(path)
        try:
            data = json.loads(path.read_text(encoding='utf-8'))
        except (OSError, json.JSONDecodeError) as e:
            raise InputError(f"Cannot read voter registry {path}: {e}") from e

        voters = data.get('voters') if isinstance(data, dict) else data
        if not isinstance(voters, list):
            raise InputError(f"Voter registry {path} has no 'voters' list")
        return cls(voters)

    @property
    def identities(self) -> Tuple[str, ...]:
        return self._identities

    def __len__(self) -> int:
        return len(self._identities)

    def __contains__(self, identity: str) -> bool:
        return self.index_of(identity) is not None

    def __iter__(self):
        return iter(self._identities)

    def index_of(self, identity: str) -> Optional[int]:
        """O(1) lookup; None for unknown or malformed identities"""
        try:
            return self._index.get(normalize_identity(identity))
        except InputError:
            return None

    def require_index(self, identity: str) -> int:
        index = self.index_of(identity)
        if index is None:
            raise UnknownVoter(f"Invalid voter identity: {identity}")
        return index

    def append(self, identity: str) -> int:
        """Add a voter at the end; existing indices never move"""
        voter = normalize_identity(identity)
        if voter in self._index:
            raise DuplicateVoter(f"Voter {voter} already registered")
        leaf = encode_identity(voter)
        if leaf in self._leaf_owners:
            raise DuplicateVoter(
                f"Voter {voter} encodes to the same leaf as {self._leaf_owners[leaf]}")

        index = dict(self._index)
        index[voter] = len(self._identities)
        leaf_owners = dict(self._leaf_owners)
        leaf_owners[leaf] = voter
        self._identities = self._identities + (voter,)
        self._index = MappingProxyType(index)
        self._leaf_owners = MappingProxyType(leaf_owners)
        return index[voter]

    def mapping(self) -> Mapping[str, int]:
        return self._index

    def save_mapping(self, path: Path):
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(dict(self._index), indent=2), encoding='utf-8')
        logger.info(f"Voter mapping saved to {path}")

    def padded_size(self, tree_depth: Optional[int] = None) -> int:
        if tree_depth is None:
            return next_power_of_two(len(self._identities))
        if tree_depth < 0:
            raise InputError(f"Tree depth must be non-negative, got {tree_depth}")
        size = 1 << tree_depth
        if size < len(self._identities):
            raise InputError(
                f"Tree depth {tree_depth} holds {size} leaves but registry has {len(self._identities)} voters")
        return size

    def padded_identities(self, tree_depth: Optional[int] = None) -> Tuple[str, ...]:
        """Extend to a power of two by repeating the last real voter.

        The repeated entry duplicates a membership path, not a voting right:
        every copy derives the same nullifier.
        """
        size = self.padded_size(tree_depth)
        padding = size - len(self._identities)
        return self._identities + (self._identities[-1],) * padding

    def leaves(self, tree_depth: Optional[int] = None) -> List[int]:
        return [encode_identity(identity) for identity in self.padded_identities(tree_depth)]

    def __repr__(self) -> str:
        return f"VoterRegistry(voters={len(self._identities)})"


def load_registry(source: Union[Path, Iterable[str]]) -> VoterRegistry:
    if isinstance(source, (str, Path)):
        return VoterRegistry.load(Path(source))
    return VoterRegistry(source)
