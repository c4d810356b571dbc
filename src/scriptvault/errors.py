"""
Project-wide exception hierarchy.

Index and install errors are raised before any state is mutated. Fetch errors
never leave :mod:`scriptvault.storage.fetch`; the coalescer logs and drops them.
"""

__all__ = [
    "ScriptVaultError",
    "ValidationError",
    "InvalidScriptError",
    "NamespaceConflictError",
    "NotFoundError",
    "FetchError",
    "ConsistencyWarning",
]


class ScriptVaultError(Exception):
    """Root exception for all scriptvault errors."""


# ── Validation ────────────────────────────────────────────────────────────────

class ValidationError(ScriptVaultError):
    """Raised when a script cannot be written as requested."""


class InvalidScriptError(ValidationError):
    """Raised when the metadata block carries no ``@name``."""

    def __init__(self, message: str = "Invalid script!") -> None:
        super().__init__(message)


class NamespaceConflictError(ValidationError):
    """Raised when another script already owns the same name and namespace."""

    def __init__(self, uri: str | None = None) -> None:
        self.uri = uri
        super().__init__(
            "Script namespace conflicts! Please modify @name and @namespace."
        )


# ── Lookup ────────────────────────────────────────────────────────────────────

class NotFoundError(ScriptVaultError, KeyError):
    """Raised when an operation targets an unknown script id."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else "Script not found"


# ── Remote resources ──────────────────────────────────────────────────────────

class FetchError(ScriptVaultError):
    """Raised by fetchers when a remote dependency is unreachable or unusable."""


class ConsistencyWarning(UserWarning):
    """Data referenced by a script is missing and cannot be re-fetched."""
