"""Conversation persistence."""
