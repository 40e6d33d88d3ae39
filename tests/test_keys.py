"""Tests for secp256k1 key handling."""

import pytest
from nostrsign.keys import (
    KeyPair,
    ecdh,
    parse_public_key_hex,
    schnorr_sign,
    schnorr_verify,
    sha256,
    xonly_public_key,
)
from nostrsign.types import InvalidKeyError
from .test_vectors import PUB1_HEX, PUB2_HEX, SEC1_HEX, SEC2_HEX


class TestKeyPair:
    """Test keypair construction."""

    def test_known_public_keys(self) -> None:
        assert KeyPair.from_private_key_hex(SEC1_HEX).public_key_hex == PUB1_HEX
        assert KeyPair.from_private_key_hex(SEC2_HEX).public_key_hex == PUB2_HEX

    def test_generate(self) -> None:
        keypair = KeyPair.generate()
        assert len(keypair.private_key) == 32
        assert len(keypair.public_key) == 32
        assert keypair.public_key == xonly_public_key(keypair.private_key)

    def test_generate_unique(self) -> None:
        assert KeyPair.generate().private_key != KeyPair.generate().private_key

    def test_hex_round_trip(self) -> None:
        keypair = KeyPair.generate()
        restored = KeyPair.from_private_key_hex(keypair.private_key_hex)
        assert restored == keypair

    def test_private_key_not_in_repr(self) -> None:
        keypair = KeyPair.from_private_key_hex(SEC1_HEX)
        assert SEC1_HEX not in repr(keypair)

    def test_rejects_wrong_length(self) -> None:
        with pytest.raises(InvalidKeyError):
            KeyPair.from_private_key(b"\x01" * 31)

    def test_rejects_zero_scalar(self) -> None:
        with pytest.raises(InvalidKeyError):
            KeyPair.from_private_key(bytes(32))

    def test_rejects_non_hex(self) -> None:
        with pytest.raises(InvalidKeyError):
            KeyPair.from_private_key_hex("zz" * 32)


class TestEcdh:
    """Test raw x-coordinate ECDH."""

    def test_shared_secret_symmetric(self) -> None:
        alice = KeyPair.generate()
        bob = KeyPair.generate()
        # Either parity gives the same x
        a = ecdh(alice.private_key, b"\x02" + bob.public_key)
        b = ecdh(bob.private_key, b"\x03" + alice.public_key)
        assert a == b
        assert len(a) == 32

    def test_one_times_point_is_point(self) -> None:
        assert ecdh(bytes.fromhex(SEC1_HEX), b"\x02" + bytes.fromhex(PUB2_HEX)).hex() == PUB2_HEX

    def test_invalid_point(self) -> None:
        with pytest.raises(InvalidKeyError):
            ecdh(bytes.fromhex(SEC1_HEX), b"\x02" + bytes.fromhex("00" * 31 + "05"))


class TestSchnorr:
    """Test BIP-340 signatures."""

    def test_sign_verify(self) -> None:
        keypair = KeyPair.generate()
        message = sha256(b"hello")
        signature = keypair.sign(message)
        assert len(signature) == 64
        assert schnorr_verify(keypair.public_key, message, signature)

    def test_wrong_message(self) -> None:
        keypair = KeyPair.generate()
        signature = keypair.sign(sha256(b"hello"))
        assert not schnorr_verify(keypair.public_key, sha256(b"goodbye"), signature)

    def test_wrong_key(self) -> None:
        signature = KeyPair.generate().sign(sha256(b"hello"))
        assert not schnorr_verify(KeyPair.generate().public_key, sha256(b"hello"), signature)

    def test_deterministic_with_aux(self) -> None:
        private_key = bytes.fromhex(SEC1_HEX)
        message = sha256(b"m")
        assert schnorr_sign(private_key, message, bytes(32)) == schnorr_sign(
            private_key, message, bytes(32)
        )

    def test_malformed_signature(self) -> None:
        keypair = KeyPair.generate()
        assert not schnorr_verify(keypair.public_key, sha256(b"x"), b"\x00" * 63)

    def test_message_must_be_32_bytes(self) -> None:
        with pytest.raises(ValueError):
            schnorr_sign(bytes.fromhex(SEC1_HEX), b"short")


class TestParsePublicKey:
    def test_valid(self) -> None:
        assert parse_public_key_hex(PUB1_HEX) == bytes.fromhex(PUB1_HEX)

    @pytest.mark.parametrize("value", ["", "abc", "zz" * 32, PUB1_HEX + "00"])
    def test_invalid(self, value: str) -> None:
        with pytest.raises(InvalidKeyError):
            parse_public_key_hex(value)
