import json

import pytest

from exceptions import DuplicateVoter, InputError, UnknownVoter
from merkle.field_hash import default_hasher
from merkle.merkle_tree import MerkleTree
from registry.voter_registry import VoterRegistry, load_registry, next_power_of_two, normalize_identity
from zk.commitments import VoteCommitmentScheme


class TestVoterRegistry:

    def test_indices_follow_input_order(self):
        registry = VoterRegistry(["0xA", "0xB", "0xC"])
        assert registry.index_of("0xA") == 0
        assert registry.index_of("0xC") == 2
        assert len(registry) == 3

    def test_lookup_is_case_insensitive(self):
        registry = VoterRegistry(["0xAbC"])
        assert registry.index_of("0XABC") == 0
        assert registry.index_of("  0xabc ") == 0
        assert "0xABC" in registry

    def test_unknown_voter(self):
        registry = VoterRegistry(["0xA"])
        assert registry.index_of("0xB") is None
        assert registry.index_of("") is None
        with pytest.raises(UnknownVoter):
            registry.require_index("0xB")

    def test_duplicates_after_normalization(self):
        with pytest.raises(DuplicateVoter):
            VoterRegistry(["0xA", "0xa"])

    def test_duplicates_after_encoding(self):
        with pytest.raises(DuplicateVoter):
            VoterRegistry(["0xa2", "0x0a2"])
        registry = VoterRegistry(["0xa2"])
        with pytest.raises(DuplicateVoter):
            registry.append("0x00A2")
        assert len(registry) == 1

    def test_decimal_and_hex_identities_are_distinct_leaves(self):
        registry = VoterRegistry(["0xa", "10"])
        leaves = registry.leaves()
        assert leaves[0] == 10
        assert leaves[0] != leaves[1]

    def test_non_ascii_digit_identity_is_hashed(self):
        registry = VoterRegistry(["²", "0xA"])
        assert registry.index_of("²") == 0
        assert len(set(registry.leaves())) == 2

    def test_hex_identity_outside_field(self):
        with pytest.raises(InputError):
            VoterRegistry([hex(1 << 300)])

    def test_empty_or_blank(self):
        with pytest.raises(InputError):
            VoterRegistry([])
        with pytest.raises(InputError):
            VoterRegistry(["0xA", "   "])
        with pytest.raises(InputError):
            normalize_identity(12)

    def test_five_voters_padded_to_eight_with_last(self):
        registry = VoterRegistry(["v1", "v2", "v3", "v4", "v5"])
        padded = registry.padded_identities()
        assert len(padded) == 8
        assert padded[:5] == ("v1", "v2", "v3", "v4", "v5")
        assert padded[5:] == ("v5", "v5", "v5")

        tree = MerkleTree.build(registry.leaves(), default_hasher.leaf_hash, default_hasher.node_hash)
        assert registry.require_index("v5") == 4
        for index in range(4, 8):
            proof = tree.proof(index)
            assert tree.verify_proof(proof)
            assert proof.lemma[0] == default_hasher.leaf_hash(registry.leaves()[4])

        # padding copies carry the last voter's nullifier and no one else's
        scheme = VoteCommitmentScheme()
        last = scheme.nullifier(tree.root(), padded[7])
        assert last == scheme.nullifier(tree.root(), "v5")
        assert all(scheme.nullifier(tree.root(), v) != last for v in ("v1", "v2", "v3", "v4"))

    def test_fixed_tree_depth(self):
        registry = VoterRegistry(["0xA", "0xB", "0xC"])
        assert len(registry.leaves(tree_depth=10)) == 1024
        with pytest.raises(InputError):
            registry.padded_size(tree_depth=1)

    def test_append_keeps_existing_indices(self):
        registry = VoterRegistry(["0xA", "0xB"])
        assert registry.append("0xC") == 2
        assert registry.index_of("0xA") == 0
        assert registry.index_of("0xB") == 1
        with pytest.raises(DuplicateVoter):
            registry.append("0XC")

    def test_mapping_is_read_only(self):
        registry = VoterRegistry(["0xA"])
        with pytest.raises(TypeError):
            registry.mapping()["0xb"] = 1

    def test_load_and_save_mapping(self, tmp_path):
        source = tmp_path / "voters.json"
        source.write_text(json.dumps({"voters": ["0xA", "0xB"]}))
        registry = load_registry(source)

        mapping_file = tmp_path / "out" / "voterMapping.json"
        registry.save_mapping(mapping_file)
        assert json.loads(mapping_file.read_text()) == {"0xa": 0, "0xb": 1}

    def test_load_rejects_garbage(self, tmp_path):
        source = tmp_path / "voters.json"
        source.write_text("{not json")
        with pytest.raises(InputError):
            VoterRegistry.load(source)

    @pytest.mark.parametrize("n,expected", [(0, 1), (1, 1), (2, 2), (3, 4), (5, 8), (9, 16)])
    def test_next_power_of_two(self, n, expected):
        assert next_power_of_two(n) == expected
