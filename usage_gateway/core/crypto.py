"""
Credential secret handling.
"""

ENCRYPTED_PREFIX = "encrypted:"


def decrypt_secret(value: str) -> str:
    """Return the plaintext API key for a stored credential.

    Placeholder only: strips the ``encrypted:`` marker and performs no
    cryptography. Must be replaced by a KMS-backed decryptor before storing
    real customer keys.
    """
    if value.startswith(ENCRYPTED_PREFIX):
        return value[len(ENCRYPTED_PREFIX):]
    return value
