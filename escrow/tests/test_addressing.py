"""
Unit Tests for deterministic account addressing

Vectors are fixed hex digests:
- organization 12345 -> sha256("organization" || 39 30 00 00 00 00 00 00)
- voucher "v1"       -> sha256("voucher" || "v1")
"""

import pytest

from escrow.addressing import (
    MAX_SEED_LEN,
    U64_MAX,
    derive_address,
    organization_address,
    require_address,
    voucher_address,
)
from escrow.errors import AddressMismatchError, InvalidSeedError

ORG_12345 = "975d8bca4e93586c1ada28f564d933e1c008b1aa9e32681423cd2a101d594c61"
VOUCHER_V1 = "1d571f8bfd6943593bd45930240f996a99dde39c7fc4240bfbfb17924da37ee1"
VOUCHER_UNICODE = "f26ed0d85a5e45f0994a92d562de654ab70e969bc67b78d70b8525de42984f7c"
ORG_12345_PROGRAM_A = "345ab991e7b7786c88d2343c246f44978c4dc9d5810cf6ac71d68462cc857e49"


class TestDerivationVectors:
    """Addresses are fixed functions of namespace and seeds."""

    def test_organization_vector(self):
        assert organization_address(12345) == ORG_12345

    def test_voucher_vector(self):
        assert voucher_address("v1") == VOUCHER_V1

    def test_voucher_id_used_as_utf8(self):
        assert voucher_address("vöucher-✓") == VOUCHER_UNICODE

    def test_derive_address_matches_helpers(self):
        assert derive_address(b"organization", b"\x39\x30\x00\x00\x00\x00\x00\x00") == ORG_12345
        assert derive_address(b"voucher", b"v1") == VOUCHER_V1

    def test_deterministic(self):
        assert organization_address(42) == organization_address(42)
        assert voucher_address("pr-123") == voucher_address("pr-123")


class TestProgramScope:
    """A configured program id moves every address; none leaves them exact."""

    def test_configured_program_id_vector(self):
        assert organization_address(12345, "program-a") == ORG_12345_PROGRAM_A

    def test_empty_program_id_is_unscoped(self):
        assert organization_address(12345, "") == ORG_12345
        assert voucher_address("v1", None) == VOUCHER_V1

    def test_program_ids_separate_deployments(self):
        assert organization_address(12345, "program-a") != organization_address(12345, "program-b")


class TestSeparation:
    """Distinct inputs land on distinct addresses."""

    def test_distinct_ids(self):
        assert organization_address(1) != organization_address(2)
        assert voucher_address("a") != voucher_address("b")

    def test_namespaces_do_not_collide(self):
        """Test identical seed bytes under different tags differ."""
        seed = (7).to_bytes(8, "little")

        assert derive_address(b"organization", seed) != derive_address(b"voucher", seed)

    def test_boundary_ids(self):
        assert organization_address(0) != organization_address(U64_MAX)


class TestMalformedSeeds:
    """Derivation only fails on malformed seed encodings."""

    def test_seed_too_long(self):
        with pytest.raises(InvalidSeedError):
            derive_address(b"voucher", b"x" * (MAX_SEED_LEN + 1))

    def test_voucher_id_too_long(self):
        with pytest.raises(InvalidSeedError):
            voucher_address("é" * 33)

    def test_id_out_of_u64_range(self):
        with pytest.raises(InvalidSeedError):
            organization_address(-1)
        with pytest.raises(InvalidSeedError):
            organization_address(U64_MAX + 1)

    def test_seed_must_be_bytes(self):
        with pytest.raises(InvalidSeedError):
            derive_address(b"voucher", "v1")

    def test_too_many_seeds(self):
        with pytest.raises(InvalidSeedError):
            derive_address(b"ns", *[b"s"] * 16)

    def test_lone_surrogate_voucher_id(self):
        with pytest.raises(InvalidSeedError, match="UTF-8"):
            voucher_address("pr-\ud800")

    def test_lone_surrogate_program_id(self):
        with pytest.raises(InvalidSeedError, match="UTF-8"):
            organization_address(1, "\udfff")


class TestRequireAddress:
    def test_match_passes(self):
        require_address("organization", organization_address(1), organization_address(1))

    def test_mismatch_names_slot(self):
        with pytest.raises(AddressMismatchError, match="organization"):
            require_address("organization", organization_address(2), organization_address(1))
