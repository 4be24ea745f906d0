from codex_tokens.models.identity import Identity
from codex_tokens.models.token_version import TokenVersion
from codex_tokens.models.usage_stats import UsageStats

__all__ = [
    "Identity",
    "TokenVersion",
    "UsageStats",
]
