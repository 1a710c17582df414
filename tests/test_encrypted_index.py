import json

import pytest

from domain.common.exceptions import CryptoException
from infrastructure.security.encrypted_index import EncryptedIndex, mask


V1_HMAC = "11" * 32
V1_AES = "22" * 32
V2_HMAC = "33" * 32
V2_AES = "44" * 32


def test_hmac_is_deterministic_and_hex(encrypted_index):
    first = encrypted_index.hmac("jsmith")
    second = encrypted_index.hmac("jsmith")
    assert first == second
    assert len(first) == 64
    int(first, 16)
    assert encrypted_index.hmac("jsmith1") != first


def test_hmac_depends_on_key_version():
    index = EncryptedIndex({1: V1_HMAC, 2: V2_HMAC}, {1: V1_AES, 2: V2_AES}, current_key_version=2)
    assert index.hmac("jsmith", key_version=1) != index.hmac("jsmith")


def test_hmac_unknown_version_raises(encrypted_index):
    with pytest.raises(CryptoException):
        encrypted_index.hmac("jsmith", key_version=9)


def test_encrypt_produces_envelope_with_fresh_iv(encrypted_index):
    a = json.loads(encrypted_index.encrypt("jsmith@example.com"))
    b = json.loads(encrypted_index.encrypt("jsmith@example.com"))
    assert set(a) == {"iv", "authTag", "value", "keyVersion"}
    assert a["keyVersion"] == 1
    assert len(bytes.fromhex(a["iv"])) == 12
    assert len(bytes.fromhex(a["authTag"])) == 16
    assert a["iv"] != b["iv"]
    assert a["value"] != b["value"]


def test_decrypt_recovers_plaintext(encrypted_index):
    envelope = encrypted_index.encrypt("jsmith@example.com")
    assert encrypted_index.decrypt(envelope) == "jsmith@example.com"


def test_decrypt_uses_envelope_key_version_after_rotation():
    old = EncryptedIndex({1: V1_HMAC}, {1: V1_AES})
    envelope = old.encrypt("alovelace")

    rotated = EncryptedIndex({1: V1_HMAC, 2: V2_HMAC}, {1: V1_AES, 2: V2_AES}, current_key_version=2)
    assert rotated.decrypt(envelope) == "alovelace"
    assert json.loads(rotated.encrypt("alovelace"))["keyVersion"] == 2


def test_tampered_ciphertext_fails_authentication(encrypted_index):
    data = json.loads(encrypted_index.encrypt("alovelace"))
    raw = bytearray(bytes.fromhex(data["value"]))
    raw[0] ^= 0x01
    data["value"] = raw.hex()
    with pytest.raises(CryptoException):
        encrypted_index.decrypt(json.dumps(data))


def test_tampered_auth_tag_fails(encrypted_index):
    data = json.loads(encrypted_index.encrypt("alovelace"))
    data["authTag"] = "00" * 16
    with pytest.raises(CryptoException):
        encrypted_index.decrypt(json.dumps(data))


def test_unknown_key_version_in_envelope(encrypted_index):
    data = json.loads(encrypted_index.encrypt("alovelace"))
    data["keyVersion"] = 7
    with pytest.raises(CryptoException):
        encrypted_index.decrypt(json.dumps(data))


@pytest.mark.parametrize("envelope", ["not json", "{}", '{"iv": "zz", "authTag": "", "value": "", "keyVersion": 1}'])
def test_malformed_envelope(encrypted_index, envelope):
    with pytest.raises(CryptoException):
        encrypted_index.decrypt(envelope)


@pytest.mark.parametrize(
    "value,expected",
    [
        ("", ""),
        ("a", "*"),
        ("ab", "**"),
        ("abc", "a*c"),
        ("jsmith", "j****h"),
    ],
)
def test_mask(value, expected):
    assert mask(value) == expected


def test_protect_returns_all_three_forms(encrypted_index):
    field = encrypted_index.protect("jsmith")
    assert field.hmac == encrypted_index.hmac("jsmith")
    assert field.masked == "j****h"
    assert encrypted_index.decrypt(field.encrypted) == "jsmith"


def test_encryption_key_must_be_32_bytes():
    with pytest.raises(ValueError):
        EncryptedIndex({1: V1_HMAC}, {1: "aa" * 16})


def test_current_version_must_be_configured():
    with pytest.raises(ValueError):
        EncryptedIndex({1: V1_HMAC}, {1: V1_AES}, current_key_version=2)
