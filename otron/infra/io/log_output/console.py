"""Console logging helpers for otron.

Colored terminal output for the CLI, with per-context color coding so
narration from concurrent sessions stays distinguishable.
"""

import logging
import sys
from datetime import datetime

# Global verbose setting (can be modified at runtime)
_verbose_enabled: bool = False


def set_verbose(enabled: bool) -> None:
    """Enable or disable verbose output globally."""
    global _verbose_enabled
    _verbose_enabled = enabled


def is_verbose_enabled() -> bool:
    """Check if verbose output is currently enabled."""
    return _verbose_enabled


def truncate_text(text: str, max_length: int) -> str:
    """Truncate text to max_length, adding ellipsis if truncated.

    Respects global verbose setting. If verbose is enabled,
    returns the original text unchanged.
    """
    if _verbose_enabled:
        return text
    if len(text) > max_length:
        return text[:max_length] + "..."
    return text


class Colors:
    """ANSI color codes for terminal output (bright variants)."""

    RESET = "\033[0m"
    BOLD = "\033[1m"
    GREEN = "\033[92m"
    YELLOW = "\033[93m"
    BLUE = "\033[94m"
    MAGENTA = "\033[95m"
    CYAN = "\033[96m"
    RED = "\033[91m"
    GRAY = "\033[90m"
    WHITE = "\033[97m"
    MUTED = "\033[90m"


CONTEXT_COLORS = [
    "\033[96m",  # Bright Cyan
    "\033[93m",  # Bright Yellow
    "\033[95m",  # Bright Magenta
    "\033[92m",  # Bright Green
    "\033[94m",  # Bright Blue
    "\033[97m",  # Bright White
]

# Maps context ids to their assigned colors
_context_color_map: dict[str, str] = {}
_context_color_index = 0


def get_context_color(context_id: str) -> str:
    """Get a consistent color for a context id."""
    global _context_color_index
    if context_id not in _context_color_map:
        _context_color_map[context_id] = CONTEXT_COLORS[
            _context_color_index % len(CONTEXT_COLORS)
        ]
        _context_color_index += 1
    return _context_color_map[context_id]


def log(
    icon: str,
    message: str,
    color: str = Colors.RESET,
    dim: bool = False,
    context_id: str | None = None,
) -> None:
    """Print one timestamped line, prefixed with the context id if given."""
    style = Colors.MUTED if dim else ""
    timestamp = datetime.now().strftime("%H:%M:%S")

    if context_id:
        prefix = f"{get_context_color(context_id)}[{context_id}]{Colors.RESET} "
    else:
        prefix = ""

    print(
        f"{Colors.GRAY}{timestamp}{Colors.RESET} {prefix}{style}{color}{icon} {message}{Colors.RESET}"
    )


def configure_logging(verbose: bool = False) -> None:
    """Route the ``otron`` logger hierarchy to stderr.

    Verbose mode logs at DEBUG and disables narration truncation.
    """
    set_verbose(verbose)
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
    )
    root = logging.getLogger("otron")
    root.handlers[:] = [handler]
    root.setLevel(logging.DEBUG if verbose else logging.WARNING)
    root.propagate = False
