"""Conversational coding assistant with pluggable tool providers."""

__version__ = "0.1.0"
