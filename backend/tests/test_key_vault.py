"""Key Vault tests"""
import pytest

from tokenguard.services.key_vault import (
    KeyVault, DecryptionError, VaultConfigurationError,
    encrypt_api_key, decrypt_api_key, key_hint, NONCE_SIZE
)

MASTER_KEY = "vault-test-master-key"


@pytest.mark.critical
class TestKeyVault:
    """AES-256-GCM encryption of provider keys"""

    def test_decrypts_what_it_encrypted(self):
        vault = KeyVault(MASTER_KEY)
        record = vault.encrypt("sk-test-1234567890abcd")
        assert vault.decrypt(record) == "sk-test-1234567890abcd"

    def test_record_format_is_iv_and_ciphertext_hex(self):
        record = encrypt_api_key("sk-abc", MASTER_KEY)
        iv_hex, ct_hex = record.split(":")
        assert len(bytes.fromhex(iv_hex)) == NONCE_SIZE
        # Ciphertext carries the 16-byte GCM tag
        assert len(bytes.fromhex(ct_hex)) == len("sk-abc") + 16

    def test_fresh_nonce_per_encryption(self):
        first = encrypt_api_key("sk-same", MASTER_KEY)
        second = encrypt_api_key("sk-same", MASTER_KEY)
        assert first != second

    def test_tampered_ciphertext_fails(self):
        iv_hex, ct_hex = encrypt_api_key("sk-secret", MASTER_KEY).split(":")
        flipped = f"{int(ct_hex[0], 16) ^ 1:x}" + ct_hex[1:]
        with pytest.raises(DecryptionError):
            decrypt_api_key(f"{iv_hex}:{flipped}", MASTER_KEY)

    def test_wrong_master_key_fails(self):
        record = encrypt_api_key("sk-secret", MASTER_KEY)
        with pytest.raises(DecryptionError):
            decrypt_api_key(record, "another-master-key")

    @pytest.mark.parametrize("record", ["", "nocolon", "zz:zz", "a:b:c", "00ff:00ff"])
    def test_malformed_records_fail(self, record):
        with pytest.raises(DecryptionError):
            decrypt_api_key(record, MASTER_KEY)

    def test_error_message_has_no_cipher_detail(self):
        with pytest.raises(DecryptionError) as exc_info:
            decrypt_api_key(encrypt_api_key("sk-x", MASTER_KEY), "wrong")
        assert "InvalidTag" not in str(exc_info.value)

    def test_missing_master_key_is_configuration_error(self):
        vault = KeyVault("")
        assert vault.configured is False
        with pytest.raises(VaultConfigurationError):
            vault.encrypt("sk-x")
        with pytest.raises(VaultConfigurationError):
            vault.decrypt("00:00")

    def test_long_master_key_uses_first_32_bytes(self):
        """Keys are derived by padding with '0' / truncating to 32 bytes"""
        long_key = "k" * 32
        record = encrypt_api_key("sk-x", long_key + "ignored-suffix")
        assert decrypt_api_key(record, long_key) == "sk-x"

    def test_short_master_key_is_zero_padded(self):
        record = encrypt_api_key("sk-x", "short")
        assert decrypt_api_key(record, "short" + "0" * 27) == "sk-x"


def test_key_hint_is_last_four_characters():
    assert key_hint("sk-abcdefgh1234") == "1234"
    assert key_hint("abc") == "abc"
