"""Exceptions raised deliberately by the oracle replica."""

from __future__ import annotations


class OracleError(Exception):
    """Base class for every error this package raises on purpose."""


class StateViolation(OracleError):
    """An action was attempted from a state that does not permit it.

    ``code`` is stable and machine readable; the message is meant for the user.
    """

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message

    def __repr__(self) -> str:
        return f"StateViolation(code={self.code!r}, message={self.message!r})"


__all__ = ["OracleError", "StateViolation"]
