"""Tests for the membership tree and its proofs"""

import pytest

from exceptions import IndexOutOfRange, InputError
from merkle.field_hash import (
    FIELD_PRIME,
    FieldHasher,
    default_hasher,
    identity_to_field,
    parse_field_element,
)
from merkle.merkle_tree import MerkleProof, MerkleTree, is_power_of_two


def build(leaves, hasher=default_hasher):
    return MerkleTree.build(leaves, hasher.leaf_hash, hasher.node_hash)


class TestFieldEncoding:

    def test_hex_identity_read_as_integer(self):
        assert identity_to_field("0xA") == 10
        assert identity_to_field("0xa") == 10

    def test_decimal_identity_is_hashed(self):
        assert identity_to_field("10") != 10
        assert identity_to_field("10") != identity_to_field("0xa")
        assert 0 <= identity_to_field("10") < FIELD_PRIME

    def test_other_strings_hash_into_field(self):
        value = identity_to_field("alice@example.org")
        assert 0 <= value < FIELD_PRIME
        assert value == identity_to_field("alice@example.org")

    def test_malformed_hex_identity_is_hashed(self):
        assert identity_to_field("0xzz") != identity_to_field("0xzy")
        assert 0 <= identity_to_field("0x") < FIELD_PRIME
        assert 0 <= identity_to_field("²") < FIELD_PRIME

    def test_hex_identity_outside_field_rejected(self):
        with pytest.raises(ValueError):
            identity_to_field(hex(FIELD_PRIME))

    def test_parse_decimal_signal(self):
        assert parse_field_element("12345") == 12345
        assert parse_field_element(" 7 ") == 7
        assert parse_field_element(0) == 0

    @pytest.mark.parametrize("text", ["0xa", "abc", "", "-1", "1.5", "²", "١٢"])
    def test_parse_refuses_non_decimal_text(self, text):
        with pytest.raises(ValueError):
            parse_field_element(text)

    def test_out_of_field_rejected(self):
        with pytest.raises(ValueError):
            parse_field_element(FIELD_PRIME)
        with pytest.raises(ValueError):
            parse_field_element(str(FIELD_PRIME))
        with pytest.raises(ValueError):
            parse_field_element(-1)
        with pytest.raises(ValueError):
            parse_field_element(True)

    def test_domains_separate_leaf_and_node_hashes(self):
        assert default_hasher.leaf_hash(5) != default_hasher.node_hash(5, 0)

    def test_identical_domains_refused(self):
        with pytest.raises(ValueError):
            FieldHasher(b"same", b"same")


class TestMerkleTree:

    @pytest.mark.parametrize("size", [1, 2, 4, 8, 16, 32, 64])
    def test_every_proof_recomputes_root(self, size):
        tree = build(range(100, 100 + size))
        for index in range(size):
            proof = tree.proof(index)
            assert proof.recompute_root() == tree.root()
            assert tree.verify_proof(proof)
            assert len(proof.lemma) == len(proof.path) + 2
            assert proof.depth == tree.depth

    def test_four_leaf_root_matches_manual_fold(self):
        h = default_hasher
        tree = build([10, 11, 12, 13])
        left = h.node_hash(h.leaf_hash(10), h.leaf_hash(11))
        right = h.node_hash(h.leaf_hash(12), h.leaf_hash(13))
        assert tree.root() == h.node_hash(left, right)
        assert tree.depth == 2

    def test_proof_layout(self):
        h = default_hasher
        tree = build([10, 11, 12, 13])
        proof = tree.proof(2)

        assert proof.path == (0, 1)
        assert proof.lemma[0] == h.leaf_hash(12)
        assert proof.lemma[1] == h.leaf_hash(13)
        assert proof.lemma[2] == h.node_hash(h.leaf_hash(10), h.leaf_hash(11))
        assert proof.lemma[-1] == tree.root()

    def test_path_bits_spell_leaf_index(self):
        tree = build(range(16))
        for index in range(16):
            bits = tree.proof(index).path
            assert sum(bit << level for level, bit in enumerate(bits)) == index

    def test_single_leaf_tree(self):
        tree = build([7])
        proof = tree.proof(0)

        assert tree.depth == 0
        assert tree.root() == default_hasher.leaf_hash(7)
        assert proof.path == ()
        assert proof.lemma == (tree.root(), tree.root())
        assert proof.verify(tree.root())

    @pytest.mark.parametrize("index", [-1, 4, 100])
    def test_index_out_of_range(self, index):
        tree = build([1, 2, 3, 4])
        with pytest.raises(IndexOutOfRange):
            tree.proof(index)

    def test_non_integer_index(self):
        tree = build([1, 2, 3, 4])
        with pytest.raises(InputError):
            tree.proof("1")
        with pytest.raises(InputError):
            tree.proof(True)

    def test_changing_any_leaf_changes_root(self):
        leaves = list(range(20, 28))
        root = build(leaves).root()
        for i in range(len(leaves)):
            changed = list(leaves)
            changed[i] += 1000
            assert build(changed).root() != root

    def test_build_rejects_bad_leaf_sets(self):
        with pytest.raises(InputError):
            build([])
        with pytest.raises(InputError):
            build([1, 2, 3])
        with pytest.raises(InputError):
            build([1, FIELD_PRIME])

    def test_tampered_proof_fails(self):
        tree = build([10, 11, 12, 13])
        proof = tree.proof(1)
        forged = MerkleProof(
            leaf_index=proof.leaf_index,
            path=proof.path,
            lemma=(default_hasher.leaf_hash(99),) + proof.lemma[1:],
            node_hash=proof.node_hash,
        )
        assert not forged.verify(tree.root())

    def test_proof_against_other_root_fails(self):
        proof = build([10, 11, 12, 13]).proof(0)
        other = build([10, 11, 12, 14])
        assert not other.verify_proof(proof)

    def test_proof_dict_round_trip(self):
        tree = build([10, 11, 12, 13])
        proof = tree.proof(3)
        restored = MerkleProof.from_dict(proof.to_dict(), default_hasher.node_hash)
        assert restored == proof
        assert restored.verify(tree.root())

    def test_malformed_proof_dict(self):
        with pytest.raises(InputError):
            MerkleProof.from_dict({'path': [0]}, default_hasher.node_hash)
        with pytest.raises(InputError):
            MerkleProof.from_dict({'leafIndex': 0, 'path': [0], 'lemma': ['1']},
                                  default_hasher.node_hash)

    @pytest.mark.parametrize("entry", ["abc", "0x1", "²", "-1", None])
    def test_lemma_entries_must_be_decimal(self, entry):
        data = build([10, 11, 12, 13]).proof(1).to_dict()
        data['lemma'][1] = entry
        with pytest.raises(InputError):
            MerkleProof.from_dict(data, default_hasher.node_hash)

    def test_levels_are_immutable(self):
        tree = build([1, 2, 3, 4])
        assert isinstance(tree.levels, tuple)
        assert all(isinstance(level, tuple) for level in tree.levels)
        assert tree.node(0, 3) == default_hasher.leaf_hash(4)
        with pytest.raises(IndexOutOfRange):
            tree.node(3, 0)

    def test_power_of_two_helper(self):
        assert [n for n in range(20) if is_power_of_two(n)] == [1, 2, 4, 8, 16]
