"""Claude Code CLI runner and subscription usage provider."""

from ralph.providers.claude.runner import ClaudeCodeRunner
from ralph.providers.claude.usage import SubscriptionUsageProvider

__all__ = ["ClaudeCodeRunner", "SubscriptionUsageProvider"]
