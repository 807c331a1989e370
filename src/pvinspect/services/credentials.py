"""Generation of single-use session credentials."""

import os
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
)
from cryptography.hazmat.primitives.serialization import (
    Encoding,
    NoEncryption,
    PrivateFormat,
    PublicFormat,
)
from structlog.stdlib import BoundLogger

from ..exceptions import CredentialGenerationError
from ..models.domain.credentials import CredentialPair

__all__ = ["generate_key_pair", "provision_credentials"]


def generate_key_pair(comment: str = "pv-inspect") -> tuple[bytes, str]:
    """Generate an Ed25519 key pair in OpenSSH formats.

    Parameters
    ----------
    comment
        Comment appended to the public key line.

    Returns
    -------
    tuple of bytes and str
        Private key in OpenSSH PEM format and the public key as an
        ``authorized_keys`` line.

    Raises
    ------
    CredentialGenerationError
        Raised if key generation or encoding fails.
    """
    try:
        key = Ed25519PrivateKey.generate()
        private = key.private_bytes(
            Encoding.PEM, PrivateFormat.OpenSSH, NoEncryption()
        )
        public = key.public_key().public_bytes(
            Encoding.OpenSSH, PublicFormat.OpenSSH
        )
    except (UnsupportedAlgorithm, ValueError, TypeError) as e:
        raise CredentialGenerationError(f"Cannot generate key: {e}") from e
    return private, f"{public.decode()} {comment}"


@contextmanager
def provision_credentials(
    logger: BoundLogger, *, directory: Path | None = None
) -> Iterator[CredentialPair]:
    """Generate a key pair and hold the private key in a temporary file.

    The file is created readable only by the current user and is removed
    when the context exits, whether normally or by an exception.

    Parameters
    ----------
    logger
        Logger to use.
    directory
        Directory for the key file. Defaults to the system temporary
        directory.

    Yields
    ------
    CredentialPair
        The generated credentials.

    Raises
    ------
    CredentialGenerationError
        Raised if the key cannot be generated or written.
    """
    private, public = generate_key_pair()
    try:
        fd, name = tempfile.mkstemp(
            prefix="pv-inspect-", suffix=".key", dir=directory
        )
    except OSError as e:
        raise CredentialGenerationError(f"Cannot create key file: {e}") from e
    path = Path(name)
    try:
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(private)
        except OSError as e:
            msg = f"Cannot write key file {path}: {e}"
            raise CredentialGenerationError(msg) from e
        logger.debug("Generated session key", key_file=str(path))
        yield CredentialPair(
            private_key=private, public_key=public, key_file=path
        )
    finally:
        path.unlink(missing_ok=True)
        logger.debug("Removed session key", key_file=str(path))
