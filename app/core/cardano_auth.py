"""
Cardano Wallet Authentication Utilities

This module handles Cardano-specific cryptographic operations for wallet authentication.

Authentication Flow:
1. Backend generates a random nonce and a sign-in message embedding it -> generate_nonce()
2. Frontend signs the message bytes with the wallet payment key
3. Frontend sends: address, signature, public_key
4. Backend verifies: verify_signature()
   - Verifies ED25519 signature is valid
   - Verifies public key matches the Cardano address

Every function here is pure: no database, no clock. Malformed input is reported
as a failed verification, never as an exception.

The signature verification uses:
- ED25519 cryptography (Cardano's signature algorithm)
- pycardano library for address validation and key handling
"""

import base64
import binascii
import secrets

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey

from pycardano import Address, Network, VerificationKeyHash
from pycardano.key import VerificationKey


NONCE_NUM_BYTES = 16  # 16 bytes = 32 hex characters = 128 bits

_NETWORKS = {
    "mainnet": Network.MAINNET,
    "testnet": Network.TESTNET,
}


def generate_nonce(num_bytes: int = NONCE_NUM_BYTES) -> str:
    """
    Generate a cryptographically secure random nonce for wallet authentication.

    Args:
        num_bytes: Number of random bytes to generate (default: 16 = 32 hex chars)

    Returns:
        Lowercase hex-encoded random string
    """
    if num_bytes <= 0:
        num_bytes = NONCE_NUM_BYTES
    return secrets.token_hex(num_bytes)


def _decode_hex(value: str) -> bytes:
    """Helper: Decode hex string to bytes."""
    return binascii.unhexlify(value.encode())


def _decode_base64(value: str) -> bytes:
    """Helper: Decode base64 string to bytes."""
    return base64.b64decode(value, validate=True)


def _decode_hex_or_base64(value: str) -> bytes:
    """
    Helper: Decode hex or base64 string to bytes.

    Cardano wallets may send signatures/keys in either format, so we support both.
    """
    value = value.strip()
    try:
        return _decode_hex(value)
    except (binascii.Error, ValueError):
        try:
            return _decode_base64(value)
        except (binascii.Error, ValueError):
            raise ValueError("Value must be hex or base64 encoded")


def _decode_address(address: str, network: str = "") -> Address | None:
    try:
        addr = Address.decode(address.strip())
    except Exception:
        return None
    if not isinstance(addr.payment_part, VerificationKeyHash):
        # stake and script addresses cannot sign in
        return None
    expected = _NETWORKS.get(network.strip().lower()) if network else None
    if expected is not None and addr.network != expected:
        return None
    return addr


def is_valid_address(address: str, network: str = "") -> bool:
    """
    Check that a string is a bech32 Cardano address with a key payment part.

    Args:
        address: Cardano address string (e.g., "addr1...")
        network: "mainnet" or "testnet" to restrict the network, empty for both
    """
    if not address or not isinstance(address, str):
        return False
    return _decode_address(address, network) is not None


def normalize_address(address: str) -> str:
    """Return the canonical bech32 form of an address, raising ValueError if it is invalid."""
    addr = _decode_address(address)
    if addr is None:
        raise ValueError("Invalid Cardano address")
    return addr.encode()


def _public_key_matches_address(addr: Address, public_key_bytes: bytes) -> bool:
    """
    Helper: Verify that the public key corresponds to the Cardano address.

    Compares the address payment part with the hash of the verification key.
    """
    try:
        v_key = VerificationKey.from_primitive(public_key_bytes)
        return addr.payment_part == v_key.hash()
    except Exception:
        return False


def verify_signature(address: str, message: str, signature: str, public_key: str) -> bool:
    """
    Verify a Cardano wallet signature over a sign-in message.

    Performs two checks:
    1. The ED25519 signature over the UTF-8 message bytes is cryptographically valid
    2. The public key hashes to the payment part of the provided address

    Args:
        address: Cardano wallet address (e.g., "addr1...")
        message: The exact message text that was signed
        signature: ED25519 signature (hex or base64 encoded)
        public_key: ED25519 public key (hex or base64 encoded)

    Returns:
        True if both checks pass, False otherwise (including malformed input)

    Example:
        if verify_signature("addr1...", challenge.message, "sig_hex", "pubkey_hex"):
            # Issue session tokens
    """
    if not address or not message or not signature or not public_key:
        return False

    addr = _decode_address(address)
    if addr is None:
        return False

    try:
        signature_bytes = _decode_hex_or_base64(signature)
        public_key_bytes = _decode_hex_or_base64(public_key)
    except ValueError:
        return False

    # Step 1: Verify ED25519 signature is cryptographically valid
    try:
        Ed25519PublicKey.from_public_bytes(public_key_bytes).verify(
            signature_bytes, message.encode("utf-8")
        )
    except (InvalidSignature, ValueError):
        return False

    # Step 2: Verify public key matches the provided address
    return _public_key_matches_address(addr, public_key_bytes)
