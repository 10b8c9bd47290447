"""
In-memory store for ACME HTTP-01 challenge tokens.

The ACME client presents and cleans up key authorizations while the
HTTP responder looks them up. Writers come from the renewal cycle,
readers from any number of concurrent requests; access goes through a
reader/writer lock whose scope never extends past the dict operation.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Protocol

logger = logging.getLogger(__name__)


class ChallengeResponder(Protocol):
    """Capability handed to the ACME client to publish challenge proofs."""

    def present(self, token: str, key_authorization: str) -> None: ...

    def clean_up(self, token: str) -> None: ...


class ReadWriteLock:
    """
    Reader/writer lock.

    Any number of readers may hold the lock together; a writer holds it
    alone. Waiting writers block new readers so a steady stream of
    lookups cannot starve present/clean_up.
    """

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def read(self):
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self):
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class ChallengeTokenStore:
    """
    Concurrent map from challenge token to key authorization.

    Implements ChallengeResponder for the ACME client and lookup() for
    the HTTP responder.
    """

    def __init__(self):
        self._lock = ReadWriteLock()
        self._tokens: dict[str, str] = {}

    def present(self, token: str, key_authorization: str) -> None:
        """Publish a key authorization, replacing any previous value for the token."""
        with self._lock.write():
            self._tokens[token] = key_authorization
        logger.debug(f"Presented challenge token {token}")

    def clean_up(self, token: str) -> None:
        """Remove a token. Unknown tokens are ignored."""
        with self._lock.write():
            removed = self._tokens.pop(token, None)
        if removed is not None:
            logger.debug(f"Cleaned up challenge token {token}")

    def lookup(self, token: str) -> tuple[str, bool]:
        """
        Look up the key authorization for a token.

        Returns:
            Tuple of (key_authorization, found); key_authorization is ""
            when the token is unknown.
        """
        with self._lock.read():
            key_authorization = self._tokens.get(token)
        if key_authorization is None:
            return "", False
        return key_authorization, True

    def __len__(self) -> int:
        with self._lock.read():
            return len(self._tokens)
