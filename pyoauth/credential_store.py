"""Pluggable secure storage for serialized credentials.

``SecureStore`` is the platform-store boundary: a flat key/value store of
secret strings. ``MemorySecureStore`` keeps values in process and
``KeyringSecureStore`` writes to the OS keyring. ``CredentialStore``
layers credential (de)serialization and application-tag scoping on top,
so at most one credential exists per provider id and tag.
"""

from __future__ import annotations

import json
import logging
import threading

from abc import ABC, abstractmethod
from typing import Any

from pydantic import ValidationError

from .exceptions import CredentialStoreError
from .models import Credential


logger = logging.getLogger("pyoauth.store")

KEY_SUFFIX = "oauth-token"


class SecureStore(ABC):
    """Abstract base class for secret storage backends.

    Methods are blocking; async callers run them in an executor.
    """

    @abstractmethod
    def set(self, key: str, value: str) -> bool:
        """Store ``value`` under ``key``, replacing any previous value.

        Returns
        -------
        bool
            True if the value was written.
        """

    @abstractmethod
    def get(self, key: str) -> str | None:
        """Return the value stored under ``key``, or None."""

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Delete ``key``.

        Returns
        -------
        bool
            True if the key existed and was removed.
        """

    @abstractmethod
    def keys(self, prefix: str = "") -> list[str]:
        """List stored keys starting with ``prefix``."""


class MemorySecureStore(SecureStore):
    """In-memory secret store for tests and single-process use."""

    def __init__(self) -> None:
        """Initialize the memory store."""
        self._values: dict[str, str] = {}
        self._lock = threading.Lock()

    def set(self, key: str, value: str) -> bool:
        """Store a value in memory."""
        with self._lock:
            self._values[key] = value
        return True

    def get(self, key: str) -> str | None:
        """Load a value from memory."""
        with self._lock:
            return self._values.get(key)

    def delete(self, key: str) -> bool:
        """Delete a value from memory."""
        with self._lock:
            return self._values.pop(key, None) is not None

    def keys(self, prefix: str = "") -> list[str]:
        """List keys held in memory."""
        with self._lock:
            return [key for key in self._values if key.startswith(prefix)]


class KeyringSecureStore(SecureStore):
    """OS keyring-backed secret store.

    The keyring API cannot enumerate entries, so the store keeps a JSON
    index of its keys under a reserved account name.

    Parameters
    ----------
    service_name : str
        Service name for keyring storage (default "pyoauth").
    """

    INDEX_KEY = "__pyoauth_index__"

    def __init__(self, service_name: str = "pyoauth") -> None:
        """Initialize the keyring store."""
        try:
            import keyring as _keyring
        except ImportError:
            msg = "Install keyring for persistent credential storage: pip install keyring"
            raise ImportError(msg) from None
        self._service_name = service_name
        self._keyring = _keyring
        self._lock = threading.Lock()

    def _read_index(self) -> list[str]:
        raw = self._keyring.get_password(self._service_name, self.INDEX_KEY)
        if not raw:
            return []
        try:
            index = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Discarding corrupt keyring index for %s", self._service_name)
            return []
        return [key for key in index if isinstance(key, str)]

    def _write_index(self, index: list[str]) -> None:
        if index:
            self._keyring.set_password(self._service_name, self.INDEX_KEY, json.dumps(index))
        else:
            self._delete_entry(self.INDEX_KEY)

    def _delete_entry(self, key: str) -> bool:
        from keyring.errors import PasswordDeleteError

        try:
            self._keyring.delete_password(self._service_name, key)
        except PasswordDeleteError:
            return False
        return True

    def set(self, key: str, value: str) -> bool:
        """Save a value to the OS keyring."""
        with self._lock:
            self._keyring.set_password(self._service_name, key, value)
            index = self._read_index()
            if key not in index:
                index.append(key)
                self._write_index(index)
        return True

    def get(self, key: str) -> str | None:
        """Load a value from the OS keyring."""
        return self._keyring.get_password(self._service_name, key)

    def delete(self, key: str) -> bool:
        """Delete a value from the OS keyring."""
        with self._lock:
            removed = self._delete_entry(key)
            index = self._read_index()
            if key in index:
                index.remove(key)
                self._write_index(index)
        return removed

    def keys(self, prefix: str = "") -> list[str]:
        """List indexed keys starting with ``prefix``."""
        with self._lock:
            return [key for key in self._read_index() if key.startswith(prefix)]


class CredentialStore:
    """Credential persistence scoped to one application tag.

    Parameters
    ----------
    backend : SecureStore
        The secret store that holds serialized credentials.
    application_tag : str
        Namespace prepended to every key (default "pyoauth").
    """

    def __init__(self, backend: SecureStore, application_tag: str = "pyoauth") -> None:
        """Initialize the credential store."""
        self.backend = backend
        self.application_tag = application_tag
        self._lock = threading.RLock()

    @property
    def _prefix(self) -> str:
        return f"{self.application_tag}."

    def key_for(self, provider_id: str) -> str:
        """Return the backend key used for ``provider_id``."""
        return f"{self._prefix}{provider_id}.{KEY_SUFFIX}"

    def _provider_id(self, key: str) -> str | None:
        suffix = f".{KEY_SUFFIX}"
        if not key.startswith(self._prefix) or not key.endswith(suffix):
            return None
        return key[len(self._prefix) : -len(suffix)] or None

    def save(self, credential: Credential) -> None:
        """Persist ``credential``, overwriting any previous one for its issuer.

        Raises
        ------
        CredentialStoreError
            If the backend rejects the write.
        """
        key = self.key_for(credential.issuer)
        data = credential.model_dump_json()
        with self._lock:
            try:
                written = self.backend.set(key, data)
            except Exception as exc:
                msg = f"Failed to store credential: {exc}"
                raise CredentialStoreError(msg, provider=credential.issuer) from exc
        if not written:
            msg = "Credential store refused the write"
            raise CredentialStoreError(msg, provider=credential.issuer)
        logger.debug("Stored credential for %s", credential.issuer)

    def load(self, provider_id: str) -> Credential | None:
        """Load the credential stored for ``provider_id``.

        Returns
        -------
        Credential or None
            The stored credential, or None if nothing is stored.

        Raises
        ------
        CredentialStoreError
            If the backend fails or the stored value cannot be decoded.
        """
        with self._lock:
            try:
                data = self.backend.get(self.key_for(provider_id))
            except Exception as exc:
                msg = f"Failed to read credential: {exc}"
                raise CredentialStoreError(msg, provider=provider_id) from exc
        if data is None:
            return None
        try:
            return Credential.model_validate_json(data)
        except ValidationError as exc:
            msg = "Stored credential could not be decoded"
            raise CredentialStoreError(msg, provider=provider_id) from exc

    def delete(self, provider_id: str) -> bool:
        """Delete the credential stored for ``provider_id``."""
        with self._lock:
            try:
                return self.backend.delete(self.key_for(provider_id))
            except Exception as exc:
                msg = f"Failed to delete credential: {exc}"
                raise CredentialStoreError(msg, provider=provider_id) from exc

    def provider_ids(self) -> list[str]:
        """List the provider ids with a stored credential under this tag."""
        with self._lock:
            try:
                keys = self.backend.keys(self._prefix)
            except Exception as exc:
                msg = f"Failed to list credentials: {exc}"
                raise CredentialStoreError(msg) from exc
        ids = (self._provider_id(key) for key in keys)
        return sorted(pid for pid in ids if pid is not None)

    def load_all(self) -> dict[str, Credential]:
        """Load every decodable credential under this tag.

        Entries that fail to decode are logged and skipped.
        """
        credentials: dict[str, Credential] = {}
        for provider_id in self.provider_ids():
            try:
                credential = self.load(provider_id)
            except CredentialStoreError as exc:
                logger.warning("Skipping stored credential: %s", exc)
                continue
            if credential is not None:
                credentials[provider_id] = credential
        return credentials

    def clear(self) -> int:
        """Delete every credential under this tag.

        Returns
        -------
        int
            The number of credentials removed.
        """
        removed = 0
        with self._lock:
            for provider_id in self.provider_ids():
                if self.delete(provider_id):
                    removed += 1
        logger.debug("Cleared %d credential(s) for tag %s", removed, self.application_tag)
        return removed


_store_instance: SecureStore | None = None
_store_lock = threading.Lock()


def get_secure_store(backend: str = "memory", **kwargs: Any) -> SecureStore:
    """Factory function for secure stores.

    Returns a singleton instance. Call ``reset_secure_store()`` to clear
    the cached instance (e.g. in tests).

    Parameters
    ----------
    backend : str
        Storage backend: "memory" or "keyring".
    **kwargs : Any
        Additional keyword arguments passed to the store constructor.

    Returns
    -------
    SecureStore
        A configured secure store instance.
    """
    global _store_instance  # noqa: PLW0603

    with _store_lock:
        if _store_instance is not None:
            return _store_instance

        if backend == "memory":
            _store_instance = MemorySecureStore()
        elif backend == "keyring":
            service_name = kwargs.get("service_name", "pyoauth")
            _store_instance = KeyringSecureStore(service_name=service_name)
        else:
            msg = f"Unknown secure store backend: {backend}"
            raise ValueError(msg)

        return _store_instance


def reset_secure_store() -> None:
    """Reset the singleton secure store instance."""
    global _store_instance  # noqa: PLW0603

    with _store_lock:
        _store_instance = None
