# ABOUTME: Sealed-box encryption of CI secrets against a repository's public key
# ABOUTME: Seals values so only the secret store holding the private key can open them

"""
Sealed-box secret encryption.

=============================================================================
WHAT IS A SEALED BOX?
=============================================================================

An anonymous public-key encryption: the recipient (GitHub's Actions secret
store) owns a long-lived Curve25519 key pair, the sender generates a
throwaway key pair for every single message.

    ephemeral_pk, ephemeral_sk = fresh key pair
    nonce      = BLAKE2b-24(ephemeral_pk || recipient_pk)
    ciphertext = crypto_box(plaintext, nonce, recipient_pk, ephemeral_sk)
    sealed     = ephemeral_pk || ciphertext          (32 + len + 16 bytes)

The nonce does not travel with the message: the recipient recomputes it from
the ephemeral public key at the front of the sealed value and its own public
key. This is byte-for-byte libsodium's crypto_box_seal, which is what the
secret store uses to open the value, so the layout is a wire contract.

The ephemeral private key only lives inside seal_secret() and is dropped when
it returns; a fresh pair per call is also what keeps the nonce unique.
"""

from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass
from typing import TYPE_CHECKING

import structlog
from nacl.encoding import RawEncoder
from nacl.exceptions import CryptoError
from nacl.hash import blake2b
from nacl.public import Box, PrivateKey, PublicKey

from gitops_api.errors import SealingError

if TYPE_CHECKING:
    from gitops_api.utils.client import GitHubClient

logger = structlog.get_logger(__name__)

PUBLIC_KEY_LENGTH = 32
NONCE_LENGTH = 24


@dataclass(frozen=True)
class RepositoryPublicKey:
    """Recipient key of a repository's secret store."""

    key_id: str
    key: bytes

    @classmethod
    def from_api_response(cls, data: dict[str, str]) -> RepositoryPublicKey:
        """Decode GitHub's {"key_id": ..., "key": <base64>} payload."""
        try:
            raw = base64.b64decode(data.get("key", ""), validate=True)
        except (binascii.Error, ValueError) as e:
            raise SealingError("public key is not valid base64", operation="get_public_key") from e
        return cls(key_id=str(data.get("key_id", "")), key=raw)


def derive_nonce(ephemeral_public_key: bytes, recipient_public_key: bytes) -> bytes:
    """BLAKE2b with a 24-byte digest over ephemeral_pk || recipient_pk."""
    return blake2b(
        ephemeral_public_key + recipient_public_key,
        digest_size=NONCE_LENGTH,
        encoder=RawEncoder,
    )


def seal_secret(plaintext: bytes, recipient_public_key: bytes) -> str:
    """
    Seal plaintext for recipient_public_key.

    Args:
        plaintext: Secret value.
        recipient_public_key: Raw 32-byte Curve25519 public key.

    Returns:
        base64(ephemeral_public_key || ciphertext_with_tag)

    Raises:
        SealingError: Wrong key length, or the key generation / box failed.
    """
    if len(recipient_public_key) != PUBLIC_KEY_LENGTH:
        raise SealingError(
            f"recipient public key must be {PUBLIC_KEY_LENGTH} bytes, "
            f"got {len(recipient_public_key)}",
            operation="seal_secret",
        )

    try:
        ephemeral = PrivateKey.generate()
        ephemeral_public = bytes(ephemeral.public_key)
        nonce = derive_nonce(ephemeral_public, recipient_public_key)
        box = Box(ephemeral, PublicKey(recipient_public_key))
        encrypted = box.encrypt(plaintext, nonce)
    except (CryptoError, OSError, ValueError) as e:
        raise SealingError(f"sealing failed: {e}", operation="seal_secret") from e

    return base64.b64encode(ephemeral_public + encrypted.ciphertext).decode("ascii")


class SecretWriter:
    """Creates or updates repository secrets through the GitHub API."""

    def __init__(self, client: GitHubClient) -> None:
        self._client = client

    async def write(self, owner: str, repo: str, name: str, value: bytes) -> None:
        """
        Fetch the repository's current public key, seal value and upload it.

        The key is fetched again on every call: it rotates independently and
        a value sealed against a stale key is silently undecryptable.
        """
        public_key = await self._client.get_public_key(owner, repo)
        sealed = seal_secret(value, public_key.key)
        await self._client.upload_secret(owner, repo, name, sealed, public_key.key_id)
        logger.info(
            "Secret written",
            repository=f"{owner}/{repo}",
            secret=name,
            key_id=public_key.key_id,
        )
