"""Unit tests for the crypto primitives."""

import json

import jwt
import pytest

from src.gatekeeper.crypto import (
    b64url_decode,
    constant_time_equals,
    decode_hex,
    decode_jwt_claims_unverified,
    hmac_sha256_hex,
    load_ed25519_public_key,
    sign_rs256_jwt,
    verify_ed25519,
)


class TestConstantTimeEquals:
    def test_equal_values(self):
        assert constant_time_equals(b"abc", b"abc")
        assert constant_time_equals("abc", "abc")

    def test_different_values_same_length(self):
        assert not constant_time_equals(b"abc", b"abd")

    def test_different_lengths(self):
        assert not constant_time_equals(b"abc", b"abcd")

    def test_mixed_str_and_bytes(self):
        assert constant_time_equals("abc", b"abc")


class TestHmac:
    def test_known_vector(self):
        # RFC 4231 test case 2
        digest = hmac_sha256_hex("Jefe", b"what do ya want for nothing?")
        assert digest == (
            "5bdcc146bf60754e6a042426089575c75a003f089d2739839dec58b964ec3843"
        )


class TestDecodeHex:
    def test_valid_hex(self):
        assert decode_hex("00ff") == b"\x00\xff"

    @pytest.mark.parametrize("value", ["zz", "abc", "0x00"])
    def test_invalid_hex_returns_none(self, value):
        assert decode_hex(value) is None


class TestEd25519:
    def test_verifies_signature(self, ed25519_keypair):
        private_key, public_hex = ed25519_keypair
        public_key = load_ed25519_public_key(public_hex)
        signature = private_key.sign(b"message")
        assert verify_ed25519(public_key, signature, b"message")

    def test_rejects_altered_message(self, ed25519_keypair):
        private_key, public_hex = ed25519_keypair
        public_key = load_ed25519_public_key(public_hex)
        signature = private_key.sign(b"message")
        assert not verify_ed25519(public_key, signature, b"messagE")

    def test_rejects_wrong_signature_length(self, ed25519_keypair):
        _, public_hex = ed25519_keypair
        public_key = load_ed25519_public_key(public_hex)
        assert not verify_ed25519(public_key, b"\x00" * 10, b"message")

    @pytest.mark.parametrize("bad_key", ["not-hex", "00" * 31, "00" * 33])
    def test_malformed_public_key_raises(self, bad_key):
        with pytest.raises(ValueError):
            load_ed25519_public_key(bad_key)


class TestJwt:
    def test_sign_rs256_round_trips_with_public_key(self, rsa_private_pem, rsa_public_pem):
        token = sign_rs256_jwt({"iss": "123", "exp": 4102444800}, rsa_private_pem)
        claims = jwt.decode(token, rsa_public_pem, algorithms=["RS256"])
        assert claims["iss"] == "123"
        assert jwt.get_unverified_header(token)["alg"] == "RS256"

    def test_decode_claims_unverified(self, rsa_private_pem):
        token = sign_rs256_jwt({"aud": "app", "exp": 1}, rsa_private_pem)
        assert decode_jwt_claims_unverified(token) == {"aud": "app", "exp": 1}

    def test_b64url_decode_without_padding(self):
        assert json.loads(b64url_decode("eyJhIjoxfQ")) == {"a": 1}

    @pytest.mark.parametrize(
        "token",
        ["only.two", "a.b.c.d", "x.!!!.y", "x.WzFd.y"],
    )
    def test_decode_claims_rejects_malformed(self, token):
        # WzFd is base64url for "[1]", a JSON array rather than an object
        with pytest.raises(ValueError):
            decode_jwt_claims_unverified(token)
