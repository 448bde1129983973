"""CLI package for otron."""
