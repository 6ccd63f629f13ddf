"""Run-as credential holder."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class RunAs:
    """Identity a process should be launched under."""

    user_name: str
    user_domain: str


class CredentialHolder:
    """Holds an optional run-as password.

    The secret lives in a mutable bytearray that is zeroed before it is
    released, so it is never kept around as an immutable str. Only touched
    from the caller's thread.
    """

    def __init__(self) -> None:
        self._secret = bytearray()

    def __len__(self) -> int:
        return len(self._secret)

    def __repr__(self) -> str:
        state = "set" if self._secret else "empty"
        return f"CredentialHolder(<{state}>)"

    @property
    def has_secret(self) -> bool:
        return len(self._secret) > 0

    def set_password(self, password: str) -> None:
        """Replace the secret; an empty string clears it."""
        self.clear()
        for ch in password:
            self._secret.extend(ch.encode("utf-8"))

    def clear(self) -> None:
        for i in range(len(self._secret)):
            self._secret[i] = 0
        del self._secret[:]

    def run_as(self, user_name: str | None, user_domain: str | None) -> RunAs | None:
        """Return the identity to launch under, or None for the caller's own.

        Credentials apply only when user name, domain and a non-empty secret
        are all present.
        """
        if not (user_name and user_domain and self.has_secret):
            return None
        return RunAs(user_name=user_name, user_domain=user_domain)
