"""Completion providers and prompts for the AI seats."""
