"""Conversation loop, project context and errors."""
