"""
Error kinds surfaced by the token engines and their collaborators.

The engines never swallow these; they propagate to the CLI, which decides
how to word them. A stale credential is deliberately NOT an error; see
ImportOutcome.STALE_IGNORED in services.token_versions.
"""


class CodexTokensError(Exception):
    """Base class for all user-facing failures."""


class DecodeError(CodexTokensError, ValueError):
    """Raised when a credential's claims segment cannot be parsed."""


class NotFoundError(CodexTokensError, LookupError):
    """Raised when an identity, version or backup source does not exist."""


class ValidationError(CodexTokensError, ValueError):
    """Raised for input that is well-formed but not acceptable."""


class StatsCaptureTimeout(CodexTokensError, TimeoutError):
    """Raised when the usage stats helper process exceeds its time bound."""


class StatsParseError(CodexTokensError):
    """Raised when the helper output holds no rate-limit record."""
