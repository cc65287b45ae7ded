from __future__ import annotations


class TriageError(Exception):
    """Base class for errors raised by the triage assistant."""


class MissingCredentialsError(TriageError):
    """A mandatory startup secret (model API key, OAuth client file) is absent."""


class ModelResponseError(TriageError):
    """The remote model answered with text that could not be parsed."""


class QuotaExhaustedError(TriageError):
    """The daily remote-model quota has been spent."""

    def __init__(self, message: str = "Daily model quota exhausted") -> None:
        super().__init__(message)


class InvalidRuleError(TriageError):
    """A filter rule names a verdict outside the closed category set."""
