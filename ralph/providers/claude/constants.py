"""Constants for the Claude Code CLI runner and the subscription usage endpoint."""

# CLI invocation (prompt goes to stdin)
DEFAULT_BINARY = "claude"
PRINT_MODE_ARGS = ("-p",)
SKIP_PERMISSIONS_ARG = "--dangerously-skip-permissions"
STREAM_JSON_ARGS = ("--output-format", "stream-json", "--verbose")

# Stream-json event types we act on
STREAM_EVENT_TYPES = frozenset({"system", "assistant", "user", "result"})

# Subprocess stdout line limit; tool results can produce very long lines
STREAM_LINE_LIMIT = 16 * 1024 * 1024

# Models
MODELS = ("opus", "sonnet")
DEFAULT_MODEL = "opus"
SUBAGENT_MODELS = frozenset({"opus", "sonnet", "haiku"})
SUBAGENT_TOOL = "Task"

# Status-line / label truncation
STATUS_MAX_LEN = 80
TOOL_LABEL_MAX_LEN = 45
RESULT_PREVIEW_LEN = 200

# Subscription usage API
USAGE_URL = "https://api.anthropic.com/api/oauth/usage"
OAUTH_BETA_HEADER = "oauth-2025-04-20"
REQUEST_TIMEOUT = 10.0

# Credential storage
CREDENTIALS_FILE = ".claude/.credentials.json"
KEYCHAIN_SERVICE = "Claude Code-credentials"

# Retry / resilience
RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503})
MAX_RETRIES = 3
RETRY_BASE_DELAY = 1.0  # seconds; doubles each attempt
MAX_RETRY_DELAY = 30.0
