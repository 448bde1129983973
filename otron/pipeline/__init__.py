"""Per-session pipeline: model calls, tool supervision and goal evaluation."""
