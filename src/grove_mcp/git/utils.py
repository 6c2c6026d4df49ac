"""Utility helpers for the git runner."""

from __future__ import annotations

import asyncio
import os
from typing import Mapping

_SANITIZED_VARS = {
    "PYTHONHOME",
    "PYTHONPATH",
    "VIRTUAL_ENV",
    "PIP_RESPECT_VIRTUALENV",
    "GIT_DIR",
    "GIT_WORK_TREE",
    "GIT_INDEX_FILE",
}


def sanitize_environment(additional: Mapping[str, str] | None = None) -> dict[str, str]:
    """Return a sanitized environment suitable for subprocess execution.

    Inherited ``GIT_DIR``-style overrides are dropped so every command targets the
    repository given by its working directory. Editors are disabled so rebases never
    block on interactive input.
    """

    env = dict(os.environ)
    for key in _SANITIZED_VARS:
        env.pop(key, None)
    env["GIT_TERMINAL_PROMPT"] = "0"
    env["GIT_EDITOR"] = "true"
    if additional:
        env.update(additional)
    return env


async def communicate_or_kill(
    process: asyncio.subprocess.Process, input: bytes | None = None
) -> tuple[bytes, bytes]:
    """Wait for ``process`` to exit; kill and reap it if the waiting task is cancelled."""

    try:
        return await process.communicate(input)
    except asyncio.CancelledError:
        if process.returncode is None:
            process.kill()
            await process.wait()
        raise
