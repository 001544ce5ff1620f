"""
Verification code generation.
"""

import secrets

CODE_BYTES = 32  # 256 bits


def generate_verification_code() -> str:
    """Cryptographically random 256-bit token, hex-encoded (64 chars)."""
    return secrets.token_hex(CODE_BYTES)


def redact_code(code: str) -> str:
    """Shorten a code for log lines."""
    if len(code) <= 8:
        return code
    return code[:8] + "..."
