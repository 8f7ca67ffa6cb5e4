"""BIP-340 Schnorr signing helpers.

Used for two keys:
- the service key, which co-signs mint requests (signature over sha256(tokenId))
- the escrow key, which signs the events the escrow publishes to relays
"""
import hashlib
import logging
from typing import Optional

from coincurve import PrivateKey, PublicKeyXOnly

logger = logging.getLogger(__name__)

class SigningError(Exception):
    """Raised when a key is missing or malformed"""
    pass

def token_digest(token_id: str) -> bytes:
    """sha256 of the token id's UTF-8 string form."""
    return hashlib.sha256(token_id.encode('utf-8')).digest()

class SigningKey:
    """A secp256k1 key producing BIP-340 signatures"""

    def __init__(self, private_key_hex: str):
        """Load a key from its 32-byte hex secret.

        Raises:
            SigningError: If the key is missing or malformed
        """
        if not private_key_hex:
            raise SigningError("Private key not configured")
        try:
            secret = bytes.fromhex(private_key_hex.strip())
            self._key = PrivateKey(secret)
        except ValueError as e:
            raise SigningError(f"Invalid private key: {e}") from e
        self.public_key_hex = PublicKeyXOnly.from_secret(self._key.secret).format().hex()

    @classmethod
    def generate(cls) -> 'SigningKey':
        """Create a fresh random key."""
        return cls(PrivateKey().secret.hex())

    def sign(self, digest: bytes) -> str:
        """Sign a 32-byte digest, returning the 64-byte signature as hex."""
        return self._key.sign_schnorr(digest).hex()

    def sign_token_id(self, token_id: str) -> str:
        """Co-sign a token id: Schnorr signature over sha256(tokenId)."""
        return self.sign(token_digest(token_id))

def verify_signature(public_key_hex: str, signature_hex: str, digest: bytes) -> bool:
    """Verify a BIP-340 signature. Malformed input verifies as False."""
    try:
        public_key = PublicKeyXOnly(bytes.fromhex(public_key_hex))
        return public_key.verify(bytes.fromhex(signature_hex), digest)
    except (ValueError, TypeError) as e:
        logger.debug(f"Signature verification failed on malformed input: {e}")
        return False

def verify_token_signature(public_key_hex: Optional[str], token_id: str, signature_hex: str) -> bool:
    """Check a mint co-signature for `token_id`."""
    if not public_key_hex or not signature_hex:
        return False
    return verify_signature(public_key_hex, signature_hex, token_digest(token_id))

__all__ = ['SigningError', 'SigningKey', 'token_digest', 'verify_signature', 'verify_token_signature']
