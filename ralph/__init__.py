"""ralph - autonomous coding-agent loop."""

__version__ = "0.1.0"
__logo__ = "🔁"
