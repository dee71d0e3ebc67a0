import base64

import pytest

from app.core.cardano_auth import (
    generate_nonce,
    is_valid_address,
    normalize_address,
    verify_signature,
)


class TestGenerateNonce:
    def test_nonce_is_32_lowercase_hex_chars(self):
        nonce = generate_nonce()
        assert len(nonce) == 32
        assert nonce == nonce.lower()
        int(nonce, 16)

    def test_nonces_are_unique(self):
        assert len({generate_nonce() for _ in range(50)}) == 50

    def test_non_positive_size_falls_back_to_default(self):
        assert len(generate_nonce(0)) == 32


class TestAddressValidation:
    def test_testnet_address_is_valid(self, wallet):
        assert is_valid_address(wallet.address)
        assert is_valid_address(wallet.address, "testnet")

    def test_network_restriction(self, wallet):
        assert not is_valid_address(wallet.address, "mainnet")

    @pytest.mark.parametrize("address", ["", "invalid-address", "addr1", "0x742d35Cc6634C0532925a3b844Bc454e4438f44e"])
    def test_malformed_addresses(self, address):
        assert not is_valid_address(address)

    def test_normalize_returns_bech32(self, wallet):
        assert normalize_address(f"  {wallet.address} ") == wallet.address

    def test_normalize_rejects_garbage(self):
        with pytest.raises(ValueError):
            normalize_address("not-an-address")


class TestVerifySignature:
    MESSAGE = "Sign this message to log in.\nNonce: 00112233445566778899aabbccddeeff"

    def test_valid_hex_signature(self, wallet):
        assert verify_signature(wallet.address, self.MESSAGE, wallet.sign(self.MESSAGE), wallet.public_key)

    def test_valid_base64_signature_and_key(self, wallet):
        signature = base64.b64encode(bytes.fromhex(wallet.sign(self.MESSAGE))).decode()
        public_key = base64.b64encode(bytes.fromhex(wallet.public_key)).decode()
        assert verify_signature(wallet.address, self.MESSAGE, signature, public_key)

    def test_signature_over_other_message(self, wallet):
        assert not verify_signature(wallet.address, self.MESSAGE, wallet.sign("other"), wallet.public_key)

    def test_key_of_another_wallet(self, wallet, make_wallet):
        other = make_wallet()
        # signature and key are consistent, but the key does not own the address
        assert not verify_signature(wallet.address, self.MESSAGE, other.sign(self.MESSAGE), other.public_key)

    @pytest.mark.parametrize("signature", ["invalid-signature", "zz", "", "00" * 10])
    def test_malformed_signature_is_rejected_not_raised(self, wallet, signature):
        assert not verify_signature(wallet.address, self.MESSAGE, signature, wallet.public_key)

    def test_malformed_public_key(self, wallet):
        assert not verify_signature(wallet.address, self.MESSAGE, wallet.sign(self.MESSAGE), "abcd")

    def test_malformed_address(self, wallet):
        assert not verify_signature("invalid-address", self.MESSAGE, wallet.sign(self.MESSAGE), wallet.public_key)
