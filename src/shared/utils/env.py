"""Environment variable loading utilities."""

from __future__ import annotations
from pathlib import Path
from typing import List, Optional
import logging

from dotenv import load_dotenv

logger = logging.getLogger(__name__)


def _candidate_env_files(start: Path) -> List[Path]:
    """Return existing .env files from the filesystem root down to ``start``."""
    candidates = [parent / ".env" for parent in reversed(list(start.parents))]
    candidates.append(start / ".env")
    return [path for path in candidates if path.exists()]


def load_env(env_file: Optional[str] = None, override: bool = False) -> List[Path]:
    """Load environment variables from .env files.
    
    Args:
        env_file: Path to .env file. If None, searches for .env in current
                 directory and parent directories (closest file wins).
        override: Whether to override existing environment variables.

    Returns:
        The files that were loaded, in load order.
    """
    if env_file:
        env_path = Path(env_file)
        env_paths = [env_path] if env_path.exists() else []
    else:
        env_paths = _candidate_env_files(Path.cwd())

    if not env_paths:
        logger.debug("No .env file found, using system environment")
        return []

    loaded: List[Path] = []
    # The closest file must win: with override the last load wins,
    # without it the first one does
    ordered = env_paths if override else list(reversed(env_paths))
    for path in ordered:
        if path in loaded:
            continue
        load_dotenv(path, override=override)
        loaded.append(path)
        logger.debug("Loaded environment from %s", path)
    return loaded
