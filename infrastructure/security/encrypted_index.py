"""
可检索的加密字段索引

- HMAC-SHA256：确定性、不可逆，用于登录名/邮箱的等值查找
- AES-256-GCM：带认证的加密，用于合法场景下恢复展示；每次加密使用新的随机IV
- mask：保留首尾字符的脱敏形式，用于日志与审计

密钥按版本号索引，支持密钥轮换：旧数据以其记录的 key_version 解密。
"""
from __future__ import annotations

import hashlib
import hmac
import json
import os
from typing import Mapping, Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from core.logging_config import get_logger
from domain.common.exceptions import CryptoException
from domain.user.entity import ProtectedField


logger = get_logger(__name__)

IV_LENGTH = 12
TAG_LENGTH = 16
MASK_CHAR = "*"


def mask(value: str) -> str:
    """保留首尾字符，其余替换为 *；长度不超过 2 的字符串全部替换"""
    if len(value) <= 2:
        return MASK_CHAR * len(value)
    return value[0] + MASK_CHAR * (len(value) - 2) + value[-1]


def _decode_keys(keys: Mapping[int, str | bytes], expected_length: Optional[int] = None) -> dict[int, bytes]:
    decoded: dict[int, bytes] = {}
    for version, key in keys.items():
        raw = bytes.fromhex(key) if isinstance(key, str) else bytes(key)
        if expected_length is not None and len(raw) != expected_length:
            raise ValueError(
                f"Encryption key version {version} must be {expected_length} bytes, got {len(raw)}"
            )
        decoded[int(version)] = raw
    return decoded


class EncryptedIndex:
    """HMAC + AES-GCM 字段保护"""

    def __init__(
        self,
        hmac_keys: Mapping[int, str | bytes],
        encryption_keys: Mapping[int, str | bytes],
        current_key_version: int = 1,
    ) -> None:
        self._hmac_keys = _decode_keys(hmac_keys)
        self._encryption_keys = _decode_keys(encryption_keys, expected_length=32)
        if current_key_version not in self._hmac_keys or current_key_version not in self._encryption_keys:
            raise ValueError(f"Key version {current_key_version} is not configured")
        self.current_key_version = current_key_version

    @classmethod
    def from_settings(cls) -> "EncryptedIndex":
        from core.config import settings

        return cls(
            hmac_keys=settings.crypto.hmac_keys,
            encryption_keys=settings.crypto.encryption_keys,
            current_key_version=settings.crypto.current_key_version,
        )

    def hmac(self, value: str, key_version: Optional[int] = None) -> str:
        """计算指定版本密钥下的 HMAC-SHA256 十六进制摘要"""
        version = self.current_key_version if key_version is None else key_version
        key = self._hmac_keys.get(version)
        if key is None:
            raise CryptoException(f"Unsupported HMAC key version: {version}")
        return hmac.new(key, value.encode("utf-8"), hashlib.sha256).hexdigest()

    def encrypt(self, value: str, key_version: Optional[int] = None) -> str:
        """
        AES-256-GCM 加密

        Returns:
            JSON 文本信封 {"iv": hex, "authTag": hex, "value": hex, "keyVersion": int}
        """
        version = self.current_key_version if key_version is None else key_version
        key = self._encryption_keys.get(version)
        if key is None:
            raise CryptoException(f"Unsupported encryption key version: {version}")

        iv = os.urandom(IV_LENGTH)
        sealed = AESGCM(key).encrypt(iv, value.encode("utf-8"), None)
        ciphertext, auth_tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
        return json.dumps({
            "iv": iv.hex(),
            "authTag": auth_tag.hex(),
            "value": ciphertext.hex(),
            "keyVersion": version,
        })

    def decrypt(self, envelope: str) -> str:
        """解密信封；密钥版本未知或认证标签校验失败时抛出 CryptoException"""
        try:
            data = json.loads(envelope)
            version = int(data["keyVersion"])
            iv = bytes.fromhex(data["iv"])
            auth_tag = bytes.fromhex(data["authTag"])
            ciphertext = bytes.fromhex(data["value"])
        except (ValueError, KeyError, TypeError):
            raise CryptoException("Malformed encrypted envelope")

        key = self._encryption_keys.get(version)
        if key is None:
            raise CryptoException(f"Unsupported key version: {version}")

        try:
            plain = AESGCM(key).decrypt(iv, ciphertext + auth_tag, None)
        except InvalidTag:
            logger.warning("decrypt_auth_tag_invalid", key_version=version)
            raise CryptoException()
        return plain.decode("utf-8")

    def mask(self, value: str) -> str:
        return mask(value)

    def protect(self, value: str, key_version: Optional[int] = None) -> ProtectedField:
        """一次性生成 HMAC、密文与脱敏三种形式"""
        return ProtectedField(
            hmac=self.hmac(value, key_version),
            encrypted=self.encrypt(value, key_version),
            masked=mask(value),
        )
