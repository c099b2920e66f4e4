"""
Cryptography for BalanceBridge events.

Provides:
- secp256k1 keypairs with x-only public keys
- BIP-340 Schnorr signing for event authentication
- NIP-44 v2 payload encryption (ECDH + HKDF + ChaCha20 + HMAC-SHA256)

Relays only ever see signed events; with payload encryption enabled
they cannot read request or response content either.
"""

from __future__ import annotations

import base64
import os
from dataclasses import dataclass

from coincurve import PrivateKey, PublicKey, PublicKeyXOnly
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, hmac
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms
from cryptography.hazmat.primitives.kdf.hkdf import HKDFExpand

from .errors import PayloadEncryptionError

NIP44_VERSION = 2
NIP44_SALT = b"nip44-v2"
MIN_PLAINTEXT_SIZE = 1
MAX_PLAINTEXT_SIZE = 65535


@dataclass(frozen=True)
class KeyPair:
    """secp256k1 keypair: 32-byte secret and 32-byte x-only public key."""

    private_key: bytes
    public_key: bytes

    @property
    def public_key_hex(self) -> str:
        return self.public_key.hex()

    @property
    def private_key_hex(self) -> str:
        return self.private_key.hex()

    @classmethod
    def from_private_hex(cls, private_hex: str) -> KeyPair:
        private_key = bytes.fromhex(private_hex.strip())
        return cls(private_key=private_key, public_key=derive_public_key(private_key))

    def __repr__(self) -> str:
        return f"KeyPair(public_key={self.public_key_hex})"


def generate_keypair() -> KeyPair:
    """Generate a fresh secp256k1 keypair."""
    private_key = PrivateKey()
    return KeyPair(private_key=private_key.secret, public_key=derive_public_key(private_key.secret))


def derive_public_key(private_key: bytes) -> bytes:
    """Derive the 32-byte x-only public key for a secret key."""
    if len(private_key) != 32:
        raise ValueError(f"secret key must be 32 bytes, got {len(private_key)}")
    return PrivateKey(private_key).public_key.format(compressed=True)[1:]


# =============================================================================
# SCHNORR SIGNATURES (BIP-340)
# =============================================================================


def schnorr_sign(private_key: bytes, digest: bytes) -> bytes:
    """
    Sign a 32-byte digest.

    Args:
        private_key: 32-byte secp256k1 secret
        digest: 32-byte message digest (a Nostr event id)

    Returns:
        64-byte BIP-340 signature
    """
    if len(digest) != 32:
        raise ValueError(f"Schnorr signing requires a 32-byte digest, got {len(digest)} bytes")
    return PrivateKey(private_key).sign_schnorr(digest, os.urandom(32))


def schnorr_verify(public_key: bytes, digest: bytes, signature: bytes) -> bool:
    """Verify a BIP-340 signature against an x-only public key."""
    if len(public_key) != 32 or len(digest) != 32 or len(signature) != 64:
        return False
    try:
        return PublicKeyXOnly(public_key).verify(signature, digest)
    except ValueError:
        return False


def is_valid_public_key(public_key: bytes) -> bool:
    """True if ``public_key`` is the x coordinate of a point on secp256k1."""
    if len(public_key) != 32:
        return False
    try:
        PublicKey(b"\x02" + public_key)
    except ValueError:
        return False
    return True


# =============================================================================
# NIP-44 v2 PAYLOAD ENCRYPTION
# =============================================================================


def get_conversation_key(private_key: bytes, peer_public_key: bytes) -> bytes:
    """
    Derive the NIP-44 conversation key shared by two parties.

    Process:
    1. ECDH on secp256k1, keeping the unhashed x coordinate
    2. HKDF-extract with salt ``nip44-v2``

    The result is symmetric: both sides derive the same key.
    """
    try:
        point = PublicKey(b"\x02" + peer_public_key).multiply(private_key)
    except ValueError as e:
        raise PayloadEncryptionError(f"invalid peer public key: {e}") from e
    shared_x = point.format(compressed=True)[1:]

    extractor = hmac.HMAC(NIP44_SALT, hashes.SHA256())
    extractor.update(shared_x)
    return extractor.finalize()


def _message_keys(conversation_key: bytes, nonce: bytes) -> tuple[bytes, bytes, bytes]:
    keys = HKDFExpand(algorithm=hashes.SHA256(), length=76, info=nonce).derive(conversation_key)
    return keys[0:32], keys[32:44], keys[44:76]


def calc_padded_len(unpadded_len: int) -> int:
    """Padded plaintext length for NIP-44 (power-of-two chunked)."""
    if unpadded_len <= 32:
        return 32
    next_power = 1 << (unpadded_len - 1).bit_length()
    chunk = 32 if next_power <= 256 else next_power // 8
    return chunk * ((unpadded_len - 1) // chunk + 1)


def _pad(plaintext: str) -> bytes:
    raw = plaintext.encode("utf-8")
    if not MIN_PLAINTEXT_SIZE <= len(raw) <= MAX_PLAINTEXT_SIZE:
        raise PayloadEncryptionError(f"plaintext size {len(raw)} outside NIP-44 bounds")
    padding = calc_padded_len(len(raw)) - len(raw)
    return len(raw).to_bytes(2, "big") + raw + b"\x00" * padding


def _unpad(padded: bytes) -> str:
    length = int.from_bytes(padded[0:2], "big")
    if length < MIN_PLAINTEXT_SIZE or len(padded) != 2 + calc_padded_len(length):
        raise PayloadEncryptionError("invalid NIP-44 padding")
    return padded[2 : 2 + length].decode("utf-8")


def _chacha20(key: bytes, nonce: bytes, data: bytes) -> bytes:
    # cryptography takes a 16-byte nonce: 4-byte little-endian counter + 12-byte nonce
    cipher = Cipher(algorithms.ChaCha20(key, b"\x00" * 4 + nonce), mode=None)
    encryptor = cipher.encryptor()
    return encryptor.update(data) + encryptor.finalize()


def _hmac_aad(key: bytes, nonce: bytes, ciphertext: bytes) -> hmac.HMAC:
    mac = hmac.HMAC(key, hashes.SHA256())
    mac.update(nonce + ciphertext)
    return mac


def nip44_encrypt(plaintext: str, conversation_key: bytes, nonce: bytes | None = None) -> str:
    """
    Encrypt a payload for a peer.

    Args:
        plaintext: UTF-8 text, 1..65535 bytes once encoded
        conversation_key: Output of ``get_conversation_key``
        nonce: 32 random bytes (generated when omitted)

    Returns:
        Base64 payload: version || nonce || ciphertext || mac
    """
    nonce = nonce if nonce is not None else os.urandom(32)
    chacha_key, chacha_nonce, hmac_key = _message_keys(conversation_key, nonce)
    ciphertext = _chacha20(chacha_key, chacha_nonce, _pad(plaintext))
    mac = _hmac_aad(hmac_key, nonce, ciphertext).finalize()
    return base64.b64encode(bytes([NIP44_VERSION]) + nonce + ciphertext + mac).decode("ascii")


def nip44_decrypt(payload: str, conversation_key: bytes) -> str:
    """
    Decrypt a NIP-44 v2 payload.

    Raises:
        PayloadEncryptionError: Unknown version, bad MAC (tampered data) or bad padding
    """
    if not payload or payload.startswith("#"):
        raise PayloadEncryptionError("unsupported NIP-44 payload encoding")
    try:
        data = base64.b64decode(payload, validate=True)
    except ValueError as e:
        raise PayloadEncryptionError(f"invalid base64 payload: {e}") from e
    if len(data) < 99:
        raise PayloadEncryptionError("NIP-44 payload too short")
    if data[0] != NIP44_VERSION:
        raise PayloadEncryptionError(f"unknown NIP-44 version {data[0]}")

    nonce = data[1:33]
    ciphertext = data[33:-32]
    mac = data[-32:]
    chacha_key, chacha_nonce, hmac_key = _message_keys(conversation_key, nonce)

    try:
        _hmac_aad(hmac_key, nonce, ciphertext).verify(mac)
    except InvalidSignature as e:
        raise PayloadEncryptionError("NIP-44 MAC mismatch") from e

    try:
        return _unpad(_chacha20(chacha_key, chacha_nonce, ciphertext))
    except UnicodeDecodeError as e:
        raise PayloadEncryptionError("decrypted payload is not UTF-8") from e


def encrypt_for(sender: KeyPair, recipient_public_hex: str, plaintext: str) -> str:
    """Encrypt ``plaintext`` from ``sender`` to a hex x-only public key."""
    try:
        recipient = bytes.fromhex(recipient_public_hex)
    except ValueError as e:
        raise PayloadEncryptionError(f"invalid recipient public key: {e}") from e
    return nip44_encrypt(plaintext, get_conversation_key(sender.private_key, recipient))


def decrypt_from(recipient: KeyPair, sender_public_hex: str, payload: str) -> str:
    """Decrypt a payload ``sender_public_hex`` encrypted to ``recipient``."""
    try:
        sender = bytes.fromhex(sender_public_hex)
    except ValueError as e:
        raise PayloadEncryptionError(f"invalid sender public key: {e}") from e
    return nip44_decrypt(payload, get_conversation_key(recipient.private_key, sender))
