# Credential Engine - Encryption Service
#
# Passphrase -> encryption key (PBKDF2-HMAC-SHA256)
# Value encryption (AES-256-GCM, fresh salt + IV per call)
# Passphrase strength scoring

import os
import secrets
import string
from dataclasses import dataclass, field
from typing import List, Tuple

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from ..errors import DecryptionError, EncryptionError, ValidationError
from .models import EncryptionEnvelope

DEFAULT_ALGORITHM = "aes-256-gcm"
DEFAULT_KEY_DERIVATION = "pbkdf2-sha256"
# Config files written by earlier tooling label the scheme plain "pbkdf2"
KEY_DERIVATION_ALIASES = {"pbkdf2": DEFAULT_KEY_DERIVATION}

DEFAULT_ITERATIONS = 600_000  # OWASP 2023 for PBKDF2-SHA256
MIN_ITERATIONS = 100_000
MAX_ITERATIONS = 10_000_000
KEY_LENGTH = 32  # AES-256
SALT_LENGTH = 32  # 256-bit salt
MIN_SALT_LENGTH = 16
MAX_SALT_LENGTH = 64
IV_LENGTH = 16  # 128-bit IV
TAG_LENGTH = 16  # 128-bit GCM tag

# Bound into every tag so envelopes can't be replayed into another context
ASSOCIATED_DATA = b"mcp-credentials/v1"

PASSPHRASE_SYMBOLS = "!@#$%^&*()_+-=[]{}|;:,.<>?"
MIN_PASSPHRASE_LENGTH = 8
STRONG_PASSPHRASE_LENGTH = 12
MIN_PASSPHRASE_SCORE = 3


def normalize_key_derivation(name: str) -> str:
    """Map legacy KDF labels to the identifier that is actually used."""
    lowered = (name or "").strip().lower()
    return KEY_DERIVATION_ALIASES.get(lowered, lowered)


def algorithm_identifier(iterations: int) -> str:
    """Persisted identifier, e.g. ``aes-256-gcm:pbkdf2-sha256:600000``."""
    return f"{DEFAULT_ALGORITHM}:{DEFAULT_KEY_DERIVATION}:{iterations}"


def parse_algorithm_identifier(identifier: str) -> Tuple[str, str, int]:
    """
    Split an algorithm identifier into (cipher, kdf, iterations).

    Raises:
        DecryptionError: unknown cipher/KDF or malformed parameters
    """
    parts = identifier.split(":")
    if len(parts) != 3:
        raise DecryptionError(f"Unsupported algorithm identifier: {identifier!r}")

    cipher, kdf, iterations_raw = parts
    if cipher != DEFAULT_ALGORITHM or normalize_key_derivation(kdf) != DEFAULT_KEY_DERIVATION:
        raise DecryptionError(f"Unsupported algorithm identifier: {identifier!r}")
    try:
        iterations = int(iterations_raw)
    except ValueError:
        raise DecryptionError(f"Invalid iteration count in {identifier!r}") from None
    if not MIN_ITERATIONS <= iterations <= MAX_ITERATIONS:
        raise DecryptionError(f"Iteration count out of range in {identifier!r}")
    return cipher, DEFAULT_KEY_DERIVATION, iterations


def validate_encryption_config(
    algorithm: str,
    key_derivation: str,
    salt_length: int,
    iterations: int,
) -> None:
    """
    Structural check of cipher parameters.

    Raises:
        ValidationError: on any unsupported or out-of-range value
    """
    if (algorithm or "").strip().lower() != DEFAULT_ALGORITHM:
        raise ValidationError(f"Unsupported encryption algorithm: {algorithm!r}")
    if normalize_key_derivation(key_derivation) != DEFAULT_KEY_DERIVATION:
        raise ValidationError(f"Unsupported key derivation: {key_derivation!r}")
    if not MIN_SALT_LENGTH <= salt_length <= MAX_SALT_LENGTH:
        raise ValidationError(f"Invalid salt length: {salt_length}")
    if not MIN_ITERATIONS <= iterations <= MAX_ITERATIONS:
        raise ValidationError(f"Invalid iteration count: {iterations}")


class EncryptionService:
    """
    Encrypts and decrypts single credential values.

    Flow:
    1. Fresh random salt, PBKDF2 derives a 256-bit key from passphrase + salt
    2. Fresh random 128-bit IV
    3. AES-256-GCM encrypts with fixed associated data
    4. Ciphertext, IV, salt, tag and algorithm id go into an envelope

    The iteration count travels in the envelope's algorithm identifier, so
    envelopes stay decryptable after the default changes.
    """

    def __init__(self, iterations: int = DEFAULT_ITERATIONS, salt_length: int = SALT_LENGTH):
        validate_encryption_config(DEFAULT_ALGORITHM, DEFAULT_KEY_DERIVATION, salt_length, iterations)
        self.iterations = iterations
        self.salt_length = salt_length

    @property
    def algorithm(self) -> str:
        return algorithm_identifier(self.iterations)

    @staticmethod
    def derive_key(passphrase: str, salt: bytes, iterations: int = DEFAULT_ITERATIONS) -> bytes:
        """
        Derive a 256-bit key from a passphrase using PBKDF2-HMAC-SHA256.

        Args:
            passphrase: User passphrase
            salt: Random salt (stored in the envelope)
            iterations: PBKDF2 iteration count

        Returns:
            32-byte key
        """
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=KEY_LENGTH,
            salt=salt,
            iterations=iterations,
        )
        return kdf.derive(passphrase.encode("utf-8"))

    def generate_salt(self) -> bytes:
        return os.urandom(self.salt_length)

    @staticmethod
    def generate_iv() -> bytes:
        return os.urandom(IV_LENGTH)

    def encrypt(self, plaintext: str, passphrase: str) -> EncryptionEnvelope:
        """
        Encrypt plaintext with AES-256-GCM.

        Raises:
            EncryptionError: plaintext or passphrase empty or not a string
        """
        if not isinstance(plaintext, str) or not plaintext:
            raise EncryptionError("Plaintext must be a non-empty string")
        if not isinstance(passphrase, str) or not passphrase:
            raise EncryptionError("Passphrase must be a non-empty string")

        salt = self.generate_salt()
        iv = self.generate_iv()
        key = self.derive_key(passphrase, salt, self.iterations)

        sealed = AESGCM(key).encrypt(iv, plaintext.encode("utf-8"), ASSOCIATED_DATA)
        ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]

        return EncryptionEnvelope(
            ciphertext=ciphertext.hex(),
            iv=iv.hex(),
            salt=salt.hex(),
            auth_tag=tag.hex(),
            algorithm=self.algorithm,
        )

    def decrypt(self, envelope: EncryptionEnvelope, passphrase: str) -> str:
        """
        Decrypt an envelope.

        Raises:
            DecryptionError: malformed envelope, wrong passphrase or tampering
        """
        if not isinstance(passphrase, str) or not passphrase:
            raise DecryptionError("Passphrase must be a non-empty string")
        if not isinstance(envelope, EncryptionEnvelope):
            envelope = EncryptionEnvelope.from_dict(envelope)

        _, _, iterations = parse_algorithm_identifier(envelope.algorithm)

        try:
            ciphertext = bytes.fromhex(envelope.ciphertext)
            iv = bytes.fromhex(envelope.iv)
            salt = bytes.fromhex(envelope.salt)
            tag = bytes.fromhex(envelope.auth_tag)
        except ValueError:
            raise DecryptionError("Invalid envelope: fields are not valid hex") from None

        if len(tag) != TAG_LENGTH:
            raise DecryptionError("Invalid envelope: bad authentication tag length")
        if len(iv) != IV_LENGTH:
            raise DecryptionError("Invalid envelope: bad IV length")
        if not salt:
            raise DecryptionError("Invalid envelope: empty salt")

        key = self.derive_key(passphrase, salt, iterations)
        try:
            plaintext = AESGCM(key).decrypt(iv, ciphertext + tag, ASSOCIATED_DATA)
        except InvalidTag:
            # Wrong passphrase and tampered data look the same here
            raise DecryptionError("Decryption failed: authentication failed") from None

        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError:
            raise DecryptionError("Decryption failed: plaintext is not UTF-8") from None


# ── Passphrase Strength ─────────────────────────────────────────────


@dataclass(frozen=True)
class PassphraseStrength:
    valid: bool
    score: int
    feedback: List[str] = field(default_factory=list)


def score_passphrase(passphrase: str) -> PassphraseStrength:
    """
    Score a passphrase.

    One point each for: length >= 12, lowercase, uppercase, digit, symbol
    (max 5). Accepted only when length >= 8 and score >= 3.
    """
    feedback: List[str] = []
    score = 0
    passphrase = passphrase or ""

    if len(passphrase) < MIN_PASSPHRASE_LENGTH:
        feedback.append(f"Passphrase should be at least {MIN_PASSPHRASE_LENGTH} characters long")
    if len(passphrase) >= STRONG_PASSPHRASE_LENGTH:
        score += 1

    checks = (
        (str.islower, "Passphrase should contain lowercase letters"),
        (str.isupper, "Passphrase should contain uppercase letters"),
        (str.isdigit, "Passphrase should contain numbers"),
        (_is_symbol, "Passphrase should contain special characters"),
    )
    for predicate, message in checks:
        if any(predicate(c) for c in passphrase):
            score += 1
        else:
            feedback.append(message)

    valid = len(passphrase) >= MIN_PASSPHRASE_LENGTH and score >= MIN_PASSPHRASE_SCORE
    return PassphraseStrength(valid=valid, score=score, feedback=feedback)


def _is_symbol(c: str) -> bool:
    return not c.isalnum() and not c.isspace()


def verify_passphrase(passphrase: str) -> Tuple[bool, str]:
    """
    Check a passphrase against the single acceptance rule.

    Returns:
        (is_valid, error_message)
    """
    strength = score_passphrase(passphrase)
    if strength.valid:
        return True, ""
    return False, "; ".join(strength.feedback) or "Passphrase is too weak"


def generate_secure_passphrase(length: int = 64) -> str:
    """Generate a random passphrase that passes score_passphrase()."""
    if not 16 <= length <= 128:
        raise ValidationError("Passphrase length must be between 16 and 128 characters")

    alphabet = string.ascii_letters + string.digits + PASSPHRASE_SYMBOLS
    while True:
        candidate = "".join(secrets.choice(alphabet) for _ in range(length))
        if score_passphrase(candidate).score == 5:
            return candidate
