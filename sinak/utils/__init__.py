"""Shared helpers: constants, logging and debounce."""
