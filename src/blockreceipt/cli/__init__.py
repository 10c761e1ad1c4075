"""Operator console: bootstrap, slash commands and the entry point."""
