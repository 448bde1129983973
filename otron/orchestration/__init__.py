"""Session orchestration: lifecycle manager, dispatcher and factory."""
