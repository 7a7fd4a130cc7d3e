"""Prompt templates and loader."""
