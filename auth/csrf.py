"""
auth/csrf.py -- Anti-forgery token for state-changing requests.

One current value per manager instance. rotate() replaces it and the old
value stops validating immediately -- there is no grace window, so clients
must fetch the fresh token after logout or an explicit rotation.

secrets.token_hex(32) gives 256 bits of entropy, same as the API key
generator this is modelled on. validate() uses a constant-time comparison.
"""

from __future__ import annotations

import secrets
import threading


class CsrfTokenManager:
    def __init__(self, nbytes: int = 32) -> None:
        self.nbytes = nbytes
        self._lock = threading.Lock()
        self._token: str | None = None

    def current(self) -> str:
        """Return the active token, creating one on first use."""
        with self._lock:
            if self._token is None:
                self._token = secrets.token_hex(self.nbytes)
            return self._token

    def rotate(self) -> str:
        """Replace the active token and return the new value."""
        with self._lock:
            self._token = secrets.token_hex(self.nbytes)
            return self._token

    def validate(self, submitted: str | None) -> bool:
        """Return True iff submitted equals the current token exactly."""
        if not submitted or not isinstance(submitted, str):
            return False
        with self._lock:
            if self._token is None:
                return False
            return secrets.compare_digest(submitted.encode("utf-8"), self._token.encode("utf-8"))
