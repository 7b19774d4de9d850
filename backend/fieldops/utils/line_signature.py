"""
LINE webhook 簽章驗證：X-Line-Signature = Base64(HMAC-SHA256(channel secret, raw body))。
比對使用 hmac.compare_digest（固定時間），不可用 ==。
"""
import base64
import hashlib
import hmac
from typing import Optional


def compute_signature(secret: str, body: bytes) -> str:
    mac = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).digest()
    return base64.b64encode(mac).decode("ascii")


def verify_signature(secret: Optional[str], body: bytes, signature: Optional[str]) -> bool:
    """secret 或 signature 缺任一即視為不通過"""
    if not secret or not signature:
        return False
    expected = compute_signature(secret, body).encode("ascii")
    return hmac.compare_digest(expected, signature.strip().encode("utf-8"))
