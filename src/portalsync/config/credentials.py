"""
Encrypted storage for Azure service principal secrets.

portalsync authenticates to Azure with a service principal (tenant, client
id, client secret). The client id and tenant live in the plain config file;
the client secret is kept in an encrypted store, one secret per client id,
using Fernet symmetric encryption with a PBKDF2-derived key.

Security Design:
    - Secrets are never written in plaintext
    - Key derived from a user passphrase with PBKDF2-HMAC-SHA256
    - Random 256-bit salt per installation, stored next to the secrets
    - Files are written atomically with owner-only permissions

The PORTALSYNC_CLIENT_SECRET environment variable, when set, takes
precedence over the store (see resolve_client_secret).
"""

from __future__ import annotations

import base64
import json
import os
import secrets
from collections.abc import Callable
from pathlib import Path

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from portalsync.config.settings import DEFAULT_CONFIG_DIR

PBKDF2_ITERATIONS = 600_000
SALT_LENGTH = 32
MIN_PASSPHRASE_LENGTH = 12

CLIENT_SECRET_ENV = "PORTALSYNC_CLIENT_SECRET"


class CredentialError(Exception):
    """Base exception for credential-related errors."""

    pass


class CredentialStoreNotInitializedError(CredentialError):
    """Raised when the credential store has not been created yet."""

    pass


class CredentialStoreLockedError(CredentialError):
    """Raised when a secret is accessed before unlock()."""

    pass


class InvalidPassphraseError(CredentialError):
    """Raised when the passphrase cannot decrypt the store."""

    pass


class CredentialNotFoundError(CredentialError):
    """Raised when no secret is stored for a client id."""

    pass


class CredentialStore:
    """
    Passphrase-protected store of client secrets keyed by client id.

    Usage:
        store = CredentialStore()
        if not store.is_initialized():
            store.initialize("a long passphrase")
        else:
            store.unlock("a long passphrase")
        store.set_secret(client_id, secret)
        store.lock()

    Attributes:
        config_dir: Directory containing the store files.
        salt_path: Path to the key derivation salt.
        secrets_path: Path to the encrypted secrets.
    """

    def __init__(self, config_dir: Path | None = None) -> None:
        self.config_dir = config_dir or DEFAULT_CONFIG_DIR
        self.salt_path = self.config_dir / "salt"
        self.secrets_path = self.config_dir / "credentials.enc"
        self._fernet: Fernet | None = None

    def is_initialized(self) -> bool:
        return self.salt_path.exists() and self.secrets_path.exists()

    def is_unlocked(self) -> bool:
        return self._fernet is not None

    def initialize(self, passphrase: str) -> None:
        """
        Create an empty store protected by passphrase, and unlock it.

        Raises:
            CredentialError: If the store already exists.
            ValueError: If the passphrase is shorter than 12 characters.
        """
        if self.is_initialized():
            raise CredentialError(
                f"Credential store already initialized in {self.config_dir}. "
                "Delete salt and credentials.enc to reset."
            )

        if len(passphrase) < MIN_PASSPHRASE_LENGTH:
            raise ValueError(
                f"Passphrase must be at least {MIN_PASSPHRASE_LENGTH} characters."
            )

        self.config_dir.mkdir(parents=True, exist_ok=True)
        try:
            os.chmod(self.config_dir, 0o700)
        except OSError:
            pass

        salt = secrets.token_bytes(SALT_LENGTH)
        self._write_secure_file(self.salt_path, salt)

        self._fernet = self._derive_key(passphrase, salt)
        self._save({})

    def unlock(self, passphrase: str) -> None:
        """
        Unlock the store for reading and writing secrets.

        Raises:
            CredentialStoreNotInitializedError: If the store does not exist.
            InvalidPassphraseError: If the passphrase is wrong.
        """
        if not self.is_initialized():
            raise CredentialStoreNotInitializedError(
                "Credential store not initialized. Run 'portalsync configure' first."
            )

        fernet = self._derive_key(passphrase, self.salt_path.read_bytes())
        try:
            fernet.decrypt(self.secrets_path.read_bytes())
        except InvalidToken as e:
            raise InvalidPassphraseError("Invalid passphrase. Cannot decrypt credentials.") from e

        self._fernet = fernet

    def lock(self) -> None:
        self._fernet = None

    def get_secret(self, client_id: str) -> str:
        """
        Return the client secret stored for client_id.

        Raises:
            CredentialStoreLockedError: If the store is locked.
            CredentialNotFoundError: If nothing is stored for client_id.
        """
        stored = self._load()
        if client_id not in stored:
            raise CredentialNotFoundError(f"No client secret stored for client id: {client_id}")
        return stored[client_id]

    def set_secret(self, client_id: str, secret: str) -> None:
        stored = self._load()
        stored[client_id] = secret
        self._save(stored)

    def delete_secret(self, client_id: str) -> None:
        stored = self._load()
        if client_id not in stored:
            raise CredentialNotFoundError(f"No client secret stored for client id: {client_id}")
        del stored[client_id]
        self._save(stored)

    def list_client_ids(self) -> list[str]:
        return sorted(self._load())

    def _derive_key(self, passphrase: str, salt: bytes) -> Fernet:
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=salt,
            iterations=PBKDF2_ITERATIONS,
        )
        return Fernet(base64.urlsafe_b64encode(kdf.derive(passphrase.encode())))

    def _require_fernet(self) -> Fernet:
        if self._fernet is None:
            raise CredentialStoreLockedError(
                "Credential store is locked. Call unlock() with passphrase first."
            )
        return self._fernet

    def _load(self) -> dict[str, str]:
        fernet = self._require_fernet()
        decrypted = fernet.decrypt(self.secrets_path.read_bytes())
        data: dict[str, str] = json.loads(decrypted.decode())
        return data

    def _save(self, stored: dict[str, str]) -> None:
        fernet = self._require_fernet()
        self._write_secure_file(self.secrets_path, fernet.encrypt(json.dumps(stored).encode()))

    def _write_secure_file(self, path: Path, data: bytes) -> None:
        """Write data via a temp file and rename, with owner-only permissions."""
        temp_path = path.with_suffix(".tmp")
        try:
            temp_path.write_bytes(data)
            try:
                os.chmod(temp_path, 0o600)
            except OSError:
                pass
            temp_path.replace(path)
        except Exception:
            if temp_path.exists():
                temp_path.unlink()
            raise


def resolve_client_secret(
    client_id: str,
    store: CredentialStore | None = None,
    prompt: Callable[[str], str] | None = None,
) -> str:
    """
    Find the client secret for client_id.

    The PORTALSYNC_CLIENT_SECRET environment variable wins. Otherwise the
    credential store is unlocked with a passphrase from prompt and the
    secret read from it; the store is locked again afterwards.

    Raises:
        CredentialError: If no secret can be found.
    """
    env_secret = os.environ.get(CLIENT_SECRET_ENV)
    if env_secret:
        return env_secret

    store = store or CredentialStore()
    if not store.is_initialized():
        raise CredentialStoreNotInitializedError(
            f"No client secret: set {CLIENT_SECRET_ENV} or run 'portalsync configure'."
        )
    if prompt is None:
        raise CredentialStoreLockedError("Credential store is locked and no passphrase prompt given.")

    store.unlock(prompt("Enter passphrase to unlock credentials: "))
    try:
        return store.get_secret(client_id)
    finally:
        store.lock()
