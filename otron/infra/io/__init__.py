"""Configuration and narration output."""
