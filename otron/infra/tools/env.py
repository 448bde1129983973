"""Environment configuration and loading for otron.

Centralizes config paths and dotenv loading. Import this module early
to ensure environment variables are set before Braintrust setup.
"""

import os
from pathlib import Path

from dotenv import load_dotenv

# User config directory (stores .env and otron.yaml)
USER_CONFIG_DIR = Path.home() / ".config" / "otron"


def get_repositories_file() -> Path:
    """Get the repository definitions file, respecting OTRON_REPOSITORIES_FILE.

    This function evaluates the env var at call time, so it respects
    values loaded from .env via load_user_env().
    """
    return Path(
        os.environ.get("OTRON_REPOSITORIES_FILE", str(USER_CONFIG_DIR / "otron.yaml"))
    )


def load_user_env() -> None:
    """Load environment from user config directory.

    Loads ${USER_CONFIG_DIR}/.env (typically ~/.config/otron/.env).
    Call this early for Braintrust API key setup before client creation.
    """
    load_dotenv(dotenv_path=USER_CONFIG_DIR / ".env")


def load_env(env_file: Path | None = None) -> None:
    """Load environment from user config and optionally an extra file.

    Args:
        env_file: Optional extra .env file loaded with override=True,
            used by tests and by ``otron run --env-file``.
    """
    load_user_env()
    if env_file is not None:
        load_dotenv(dotenv_path=env_file, override=True)
