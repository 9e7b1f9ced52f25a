"""Attach stored credentials to outbound HTTP requests.

Pass a ``CredentialInjector`` as the ``auth`` of an httpx client and every
request whose URL matches a provider's ``authorization_pattern`` gains that
provider's ``Authorization`` header::

    injector = CredentialInjector()
    async with httpx.AsyncClient(auth=injector) as client:
        await client.get("https://api.github.com/user")
"""

from __future__ import annotations

import logging
import re
import threading

from dataclasses import dataclass
from typing import TYPE_CHECKING

import httpx


if TYPE_CHECKING:
    from collections.abc import Generator

    from .models import Credential, Provider


logger = logging.getLogger("pyoauth.injector")


@dataclass(frozen=True)
class _Entry:
    pattern: re.Pattern[str]
    credential: Credential


class CredentialInjector(httpx.Auth):
    """Provider to credential table used to authorize outbound requests.

    Lookups purge expired credentials, so an expired token is never
    attached. All access is serialized by a lock; the injector can be
    shared between clients and threads.
    """

    def __init__(self) -> None:
        """Initialize an empty injector."""
        self._entries: dict[str, _Entry] = {}
        self._lock = threading.Lock()

    def add_credential(self, credential: Credential, provider: Provider) -> bool:
        """Register ``credential`` for URLs matching the provider's pattern.

        Replaces any credential already registered for the provider.

        Returns
        -------
        bool
            False when the provider has no ``authorization_pattern``.
        """
        if not provider.authorization_pattern:
            return False
        entry = _Entry(re.compile(provider.authorization_pattern), credential)
        with self._lock:
            self._entries[provider.id] = entry
        logger.debug("Injecting credential for %s on /%s/", provider.id, provider.authorization_pattern)
        return True

    def remove_credential(self, provider: Provider | str) -> bool:
        """Stop injecting the credential for ``provider``."""
        provider_id = provider if isinstance(provider, str) else provider.id
        with self._lock:
            return self._entries.pop(provider_id, None) is not None

    def clear(self) -> None:
        """Remove every registered credential."""
        with self._lock:
            self._entries.clear()

    def providers(self) -> list[str]:
        """Provider ids with a registered credential."""
        with self._lock:
            return list(self._entries)

    def match(self, url: httpx.URL | str) -> Credential | None:
        """Return the first live credential whose pattern matches ``url``.

        Parameters
        ----------
        url : httpx.URL or str
            The request URL.

        Returns
        -------
        Credential or None
            The matching credential, or None.
        """
        target = str(url)
        with self._lock:
            expired = [pid for pid, entry in self._entries.items() if entry.credential.is_expired]
            for provider_id in expired:
                del self._entries[provider_id]
                logger.debug("Purged expired credential for %s", provider_id)
            for entry in self._entries.values():
                if entry.pattern.search(target):
                    return entry.credential
        return None

    def authorization_header(self, url: httpx.URL | str) -> str | None:
        """``Authorization`` header value for ``url``, if a credential matches."""
        credential = self.match(url)
        if credential is None:
            return None
        return credential.authorization_header

    def apply(self, request: httpx.Request) -> httpx.Request:
        """Set the ``Authorization`` header on ``request`` when one matches.

        An explicit ``Authorization`` header on the request is left alone.
        """
        if "Authorization" in request.headers:
            return request
        header = self.authorization_header(request.url)
        if header is not None:
            request.headers["Authorization"] = header
        return request

    def auth_flow(self, request: httpx.Request) -> Generator[httpx.Request, httpx.Response, None]:
        """httpx auth hook."""
        yield self.apply(request)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
