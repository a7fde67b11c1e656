"""
Placeholder key, hash and PUFF primitives for the EV charging protocol.

None of these are security primitives. The PUFF (Physically Unclonable
Function) responses and hashes are deterministic string folds: identical
inputs always produce identical tokens, within a run and across runs, and
any change to the inputs is very likely to change the token.
"""
import random
import string
from abc import ABC, abstractmethod
from typing import NamedTuple, Optional

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import x25519

from errors import ConfigurationError

BASE36_ALPHABET = string.digits + string.ascii_lowercase

KEY_LENGTH = 13
CHALLENGE_LENGTH = 6
NONCE_LENGTH = 8
SEED_LENGTH = 8


def fold_hash(text: str) -> str:
    """Fold a string into a 32-bit signed integer and render its magnitude as hex"""
    value = 0
    for char in text:
        value = ((value << 5) - value + ord(char)) & 0xFFFFFFFF
    if value & 0x80000000:
        value -= 1 << 32
    return format(abs(value), "x")


class TokenDeriver(ABC):
    """
    Strategy for turning an ordered sequence of string inputs into a token.

    Implementations must be pure: the same inputs always give the same token.
    """

    @abstractmethod
    def derive_token(self, *inputs: str) -> str:
        """Derive a token from the concatenation of the inputs"""


class FoldTokenDeriver(TokenDeriver):
    """Default deriver backed by the 32-bit shift-and-subtract fold"""

    def derive_token(self, *inputs: str) -> str:
        return fold_hash("".join(inputs))


class PuffHashPrimitives:
    """
    Binds a TokenDeriver and exposes the two operations the protocol needs:
    a PUFF challenge-response and a combined-input fingerprint.
    """
    def __init__(self, deriver: Optional[TokenDeriver] = None):
        self.deriver = deriver or FoldTokenDeriver()

    def puff(self, challenge: str, seed: Optional[str] = None) -> str:
        """Simulated PUFF response for a challenge and optional seed"""
        return self.deriver.derive_token(challenge, seed or "")

    def hash(self, *inputs: str) -> str:
        """Fingerprint of all inputs, order-sensitive"""
        return self.deriver.derive_token(*inputs)


_DEFAULT_PRIMITIVES = PuffHashPrimitives()
_DEFAULT_RNG = random.Random()


def generate_puff(challenge: str, seed: Optional[str] = None) -> str:
    """Deterministic PUFF response using the default fold"""
    return _DEFAULT_PRIMITIVES.puff(challenge, seed)


def generate_hash(*inputs: str) -> str:
    """Deterministic fingerprint of the joined inputs using the default fold"""
    return _DEFAULT_PRIMITIVES.hash(*inputs)


def random_token(rng: random.Random, length: int) -> str:
    """Random base-36 token used for challenges, nonces and seeds"""
    return "".join(rng.choice(BASE36_ALPHABET) for _ in range(length))


def generate_key(rng: Optional[random.Random] = None) -> str:
    """Opaque placeholder key token, drawn from the module RNG unless one is given"""
    return random_token(rng or _DEFAULT_RNG, KEY_LENGTH)


class KeyPair(NamedTuple):
    public_key: str
    private_key: str


class KeyGenerator(ABC):
    """Produces the key material assigned to a node when it is created"""

    @abstractmethod
    def generate_pair(self) -> KeyPair:
        """Return a fresh public/private key pair"""

    @abstractmethod
    def generate_secret(self) -> str:
        """Return a fresh symmetric secret (EV shared key)"""


class TokenKeyGenerator(KeyGenerator):
    """Random base-36 tokens; the default, matching the dashboard's placeholder keys"""

    def __init__(self, rng: Optional[random.Random] = None):
        self.rng = rng or random.Random()

    def generate_pair(self) -> KeyPair:
        return KeyPair(generate_key(self.rng), generate_key(self.rng))

    def generate_secret(self) -> str:
        return generate_key(self.rng)


class X25519KeyGenerator(KeyGenerator):
    """
    Real X25519 key material, hex encoded. The keys only decorate the
    messages; the protocol still derives every artifact with the fold.
    """

    def generate_pair(self) -> KeyPair:
        private_key = x25519.X25519PrivateKey.generate()
        private_bytes = private_key.private_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PrivateFormat.Raw,
            encryption_algorithm=serialization.NoEncryption()
        )
        public_bytes = private_key.public_key().public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw
        )
        return KeyPair(public_bytes.hex(), private_bytes.hex())

    def generate_secret(self) -> str:
        # An X25519 private scalar doubles as a 32-byte random secret
        return self.generate_pair().private_key


KEY_SCHEMES = ("token", "x25519")


def make_key_generator(scheme: str, rng: Optional[random.Random] = None) -> KeyGenerator:
    """Build the key generator registered under a scheme name"""
    if scheme == "token":
        return TokenKeyGenerator(rng)
    if scheme == "x25519":
        return X25519KeyGenerator()
    raise ConfigurationError(f"Unknown key scheme: {scheme}")
