"""Core types and protocols shared across otron."""
