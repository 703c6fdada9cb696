"""
Credential lookup for values that should not sit in .env files

Sources, first hit wins:
1. Docker/Kubernetes secret file  /run/secrets/<name>
2. File named by <NAME>_FILE
3. Environment variable <NAME>
4. The supplied default

Used by Settings for DATABASE_URL and RESEND_API_KEY.
"""
import os
from pathlib import Path
from typing import Optional

import structlog

logger = structlog.get_logger()

SECRETS_DIR = Path("/run/secrets")


def _read_secret_file(path: Path) -> str:
    return path.read_text().strip()


def load_secret(
    secret_name: str,
    default: Optional[str] = None,
    required: bool = False
) -> Optional[str]:
    """
    Resolve a secret by name

    Raises FileNotFoundError when <NAME>_FILE points nowhere, and ValueError
    when required=True and no source (or default) has a value.
    """
    key = secret_name.lower().replace("-", "_")
    env_name = key.upper()

    mounted = SECRETS_DIR / key
    if mounted.is_file():
        try:
            value = _read_secret_file(mounted)
        except OSError as e:
            logger.error("secret_read_error", secret=key, path=str(mounted), error=str(e))
        else:
            logger.debug("secret_loaded", secret=key, source="mounted_file")
            return value

    file_var = f"{env_name}_FILE"
    pointer = os.getenv(file_var)
    if pointer:
        path = Path(pointer)
        if not path.is_file():
            raise FileNotFoundError(f"{file_var} points to missing file: {pointer}")
        logger.debug("secret_loaded", secret=key, source="env_file")
        return _read_secret_file(path)

    value = os.getenv(env_name)
    if value:
        logger.debug("secret_loaded", secret=key, source="env_var")
        return value

    if default is not None:
        logger.debug("secret_default_used", secret=key)
        return default

    if required:
        raise ValueError(f"Secret '{key}' not found in {mounted}, {file_var} or {env_name}")

    return None
