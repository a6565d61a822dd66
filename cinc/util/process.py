"""Run the wrapped game and wait for it to exit"""

import asyncio
import os
from typing import Dict, List, Optional

from cinc.util.log import logger
from cinc.util.system import get_environment


async def run_command(command: List[str], env: Optional[Dict[str, str]] = None, cwd: Optional[str] = None) -> int:
    """Execute a command, inheriting stdin/stdout/stderr, and return its
    exit code once it has exited.

    Params:
        command (list): A list containing an executable and its parameters
        env (dict): Dict of values to add to the current environment
        cwd (str): Working directory

    Returns:
        int: exit code, 127 if the command could not be started
    """
    if not command:
        logger.error("No executable provided!")
        return 127

    logger.debug("Running %s", " ".join(str(i) for i in command))
    existing_env = get_environment()
    if env:
        existing_env.update({k: v for k, v in env.items() if v is not None})

    try:
        process = await asyncio.create_subprocess_exec(*command, env=existing_env, cwd=cwd)
    except (OSError, ValueError) as ex:
        logger.error("Could not run command %s: %s", command, ex)
        return 127
    returncode = await process.wait()
    logger.debug("%s exited with code %s", os.path.basename(command[0]), returncode)
    return returncode
