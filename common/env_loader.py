#!/usr/bin/env python3
"""
.env loader for case configuration.

Loads key=value pairs into os.environ without overriding existing env vars,
so values exported by the surrounding pipeline always win over the file.
"""

from pathlib import Path
from typing import Optional

from dotenv import load_dotenv


def load_dotenv_file(path: Optional[str] = None) -> bool:
    """Load a .env file if present, without overwriting existing env vars.

    Args:
        path: Path to .env; if None, tries `.env` in the current directory.

    Returns:
        True if a file was found and loaded, False otherwise
    """
    env_path = Path(path) if path else Path.cwd() / ".env"
    if not env_path.exists():
        return False
    return load_dotenv(dotenv_path=env_path, override=False)
