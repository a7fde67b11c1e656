"""
Unit tests for the placeholder key, hash and PUFF primitives.
"""

import random

import pytest

from errors import ConfigurationError
from primitives import (
    BASE36_ALPHABET,
    KEY_LENGTH,
    FoldTokenDeriver,
    PuffHashPrimitives,
    TokenDeriver,
    TokenKeyGenerator,
    X25519KeyGenerator,
    fold_hash,
    generate_hash,
    generate_key,
    generate_puff,
    make_key_generator,
    random_token,
)


class TestFold:
    """Test the 32-bit string fold behind every derived token."""

    def test_known_values(self):
        """The fold matches the classic 31-multiplier string hash."""
        assert fold_hash("") == "0"
        assert fold_hash("a") == "61"
        assert fold_hash("abc") == format(96354, "x")

    def test_wraps_to_signed_32_bits(self):
        """Overflowing strings wrap around and the magnitude is rendered."""
        # This string hashes to the most negative 32-bit integer
        assert fold_hash("polygenelubricants") == "80000000"

    def test_result_is_lowercase_hex(self):
        token = fold_hash("EV-1" * 50)
        int(token, 16)
        assert token == token.lower()


class TestPuffAndHash:
    """Test determinism and input sensitivity of PUFF and hash."""

    def test_puff_is_deterministic(self):
        assert generate_puff("k3j9x2") == generate_puff("k3j9x2")
        assert generate_puff("k3j9x2", "seed") == generate_puff("k3j9x2", "seed")

    def test_puff_depends_on_seed(self):
        assert generate_puff("k3j9x2") != generate_puff("k3j9x2", "seed")

    def test_puff_folds_challenge_and_seed(self):
        assert generate_puff("ab", "c") == fold_hash("abc")
        assert generate_puff("abc", None) == fold_hash("abc")

    def test_hash_is_deterministic(self):
        assert generate_hash("EV-1", "5f2a") == generate_hash("EV-1", "5f2a")

    def test_hash_is_input_sensitive(self):
        assert generate_hash("EV-1", "5f2a") != generate_hash("EV-2", "5f2a")

    def test_hash_joins_inputs(self):
        assert generate_hash("a", "bc") == fold_hash("abc")


class JoinDeriver(TokenDeriver):
    def derive_token(self, *inputs):
        return "|".join(inputs)


class TestPluggableDeriver:
    """Test swapping the token derivation strategy."""

    def test_default_is_fold(self):
        assert isinstance(PuffHashPrimitives().deriver, FoldTokenDeriver)

    def test_custom_deriver_is_used(self):
        primitives = PuffHashPrimitives(JoinDeriver())

        assert primitives.hash("a", "b") == "a|b"
        assert primitives.puff("ch") == "ch|"
        assert primitives.puff("ch", "seed") == "ch|seed"


class TestKeys:
    """Test key and random token generation."""

    def test_random_token_alphabet_and_length(self):
        token = random_token(random.Random(1), 8)

        assert len(token) == 8
        assert set(token) <= set(BASE36_ALPHABET)

    def test_seeded_tokens_repeat(self):
        assert generate_key(random.Random(5)) == generate_key(random.Random(5))

    def test_generate_key_without_rng(self):
        first, second = generate_key(), generate_key()

        assert len(first) == KEY_LENGTH
        assert set(first) <= set(BASE36_ALPHABET)
        assert first != second

    def test_token_key_generator(self):
        keys = TokenKeyGenerator(random.Random(3))
        pair = keys.generate_pair()

        assert len(pair.public_key) == KEY_LENGTH
        assert len(pair.private_key) == KEY_LENGTH
        assert pair.public_key != pair.private_key
        assert len(keys.generate_secret()) == KEY_LENGTH

    def test_x25519_key_generator(self):
        pair = X25519KeyGenerator().generate_pair()

        assert len(pair.public_key) == 64
        assert len(pair.private_key) == 64
        assert pair.public_key != pair.private_key
        bytes.fromhex(pair.public_key)

    def test_make_key_generator(self):
        assert isinstance(make_key_generator("token"), TokenKeyGenerator)
        assert isinstance(make_key_generator("x25519"), X25519KeyGenerator)

    def test_unknown_key_scheme(self):
        with pytest.raises(ConfigurationError):
            make_key_generator("rsa")
