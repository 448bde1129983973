"""Durable session storage."""
