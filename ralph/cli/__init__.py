"""CLI module for ralph."""
