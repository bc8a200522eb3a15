"""口令哈希工具。

存储格式：``pbkdf2_sha256$<迭代次数>$<盐 base64>$<摘要 base64>``。
迭代次数随哈希一起保存，调整配置后旧哈希仍可校验。
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import secrets

from cwa_api.core.config import get_settings

PASSWORD_HASH_SCHEME = "pbkdf2_sha256"
_DIGEST_NAME = "sha256"
_SALT_BYTES = 16
_FIELD_SEPARATOR = "$"
# 低于该轮数的哈希视为损坏或伪造，直接拒绝。
MIN_ITERATIONS = 1000


def _pbkdf2(password: str, salt: bytes, iterations: int) -> bytes:
    return hashlib.pbkdf2_hmac(_DIGEST_NAME, password.encode("utf-8"), salt, iterations)


def hash_password(password: str, *, iterations: int | None = None) -> str:
    """生成加盐口令哈希，iterations 缺省取配置值。"""
    rounds = iterations or get_settings().auth_password_hash_iterations
    if rounds < MIN_ITERATIONS:
        raise ValueError(f"password hash iterations must be >= {MIN_ITERATIONS}")

    salt = secrets.token_bytes(_SALT_BYTES)
    fields = (
        PASSWORD_HASH_SCHEME,
        str(rounds),
        base64.b64encode(salt).decode("ascii"),
        base64.b64encode(_pbkdf2(password, salt, rounds)).decode("ascii"),
    )
    return _FIELD_SEPARATOR.join(fields)


def _parse(password_hash: str) -> tuple[int, bytes, bytes] | None:
    parts = password_hash.split(_FIELD_SEPARATOR)
    if len(parts) != 4 or parts[0] != PASSWORD_HASH_SCHEME:
        return None
    try:
        iterations = int(parts[1])
        salt = base64.b64decode(parts[2], validate=True)
        digest = base64.b64decode(parts[3], validate=True)
    except (ValueError, binascii.Error):
        return None
    if iterations < MIN_ITERATIONS or not salt or not digest:
        return None
    return iterations, salt, digest


def verify_password(password: str, password_hash: str | None) -> bool:
    """校验口令；哈希格式不合法一律视为不匹配。"""
    if not password_hash:
        return False
    parsed = _parse(password_hash)
    if parsed is None:
        return False
    iterations, salt, expected = parsed
    return hmac.compare_digest(_pbkdf2(password, salt, iterations), expected)
