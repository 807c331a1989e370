"""Models for session credentials."""

from dataclasses import dataclass, field
from pathlib import Path

__all__ = ["CredentialPair"]


@dataclass(frozen=True)
class CredentialPair:
    """Single-use key pair authenticating the operator to the pod."""

    private_key: bytes = field(repr=False)
    """Private key in OpenSSH format. Never sent to the cluster."""

    public_key: str
    """Public key as a single OpenSSH ``authorized_keys`` line."""

    key_file: Path
    """Transient file holding the private key, removed when the session
    ends."""
