"""Database password resolution.

Exactly one source is consulted per resolution, in this order: a literal
value, a password file, a password command, then the PGPASSWORD
environment variable. Earlier sources short-circuit later ones, so a
secrets-manager command never runs when a literal or file is given.
"""

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from ..constants import PGPASSWORD_ENV
from ..errors import PasswordCommandFailed, PasswordFileUnreadable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PasswordSources:
    """Password inputs supplied on the command line."""

    password: Optional[str] = None
    password_file: Optional[str] = None
    password_cmd: Optional[str] = None


async def _run_password_command(command: str) -> str:
    try:
        process = await asyncio.create_subprocess_shell(
            command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout, _ = await process.communicate()
    except OSError as e:
        raise PasswordCommandFailed(f"password-cmd could not be run: {e.strerror or e}") from e

    # stderr is never echoed
    if process.returncode != 0:
        raise PasswordCommandFailed(f"password-cmd failed with exit code {process.returncode}")

    return stdout.decode("utf-8", errors="replace").strip()


async def resolve_password(
    sources: PasswordSources,
    env: Optional[Mapping[str, str]] = None,
) -> Optional[str]:
    """Resolve the effective database password.

    Args:
        sources: Literal, file and command inputs
        env: Environment to consult for PGPASSWORD as the last resort;
             None skips the environment entirely

    Returns:
        The password, or None if no source provides one

    Raises:
        PasswordFileUnreadable: If the password file cannot be read
        PasswordCommandFailed: If the command exits non-zero or cannot run
    """
    if sources.password:
        logger.debug("Password source: literal")
        return sources.password

    if sources.password_file:
        logger.debug("Password source: file")
        try:
            return Path(sources.password_file).expanduser().read_text(encoding="utf-8").strip()
        except OSError as e:
            raise PasswordFileUnreadable(
                f"Cannot read password file {sources.password_file}: {e.strerror or e}"
            ) from e
        except UnicodeDecodeError as e:
            raise PasswordFileUnreadable(f"Password file {sources.password_file} is not valid UTF-8") from e

    if sources.password_cmd:
        logger.debug("Password source: command")
        return await _run_password_command(sources.password_cmd)

    if env is not None and env.get(PGPASSWORD_ENV):
        logger.debug(f"Password source: {PGPASSWORD_ENV}")
        return env[PGPASSWORD_ENV]

    return None
