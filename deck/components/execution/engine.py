# deck/components/execution/engine.py
"""
Engine for executing external commands.

Every container engine and git invocation goes through here so that
timeouts and missing binaries surface the same way everywhere.
"""
import asyncio
import os
import shlex
import shutil
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

from deck.core.errors import EngineUnavailableError
from deck.utils.logging import get_logger

logger = get_logger(__name__)


class ExecutionEngine:
    """Engine for executing commands without a shell."""

    def __init__(self):
        """Initialize the execution engine."""
        self._logger = logger

    async def execute_command(
        self,
        args: List[str],
        cwd: Optional[Union[str, Path]] = None,
        timeout: Optional[float] = None,
        env: Optional[Dict[str, str]] = None,
    ) -> Tuple[str, str, int]:
        """
        Execute a command and return its output.

        Args:
            args: Program and arguments; never passed through a shell.
            cwd: Working directory for the command.
            timeout: Seconds to wait before killing the process.
            env: Extra environment variables merged over os.environ.

        Returns:
            A tuple of (stdout, stderr, return_code).

        Raises:
            EngineUnavailableError: If the program is missing or timed out.
        """
        command = shlex.join(args)
        self._logger.debug(f"Executing: {command}" + (f" (cwd={cwd})" if cwd else ""))

        if shutil.which(args[0]) is None:
            raise EngineUnavailableError(f"Command not found: {args[0]}", command=command)

        process_env = None
        if env:
            process_env = dict(os.environ)
            process_env.update(env)

        try:
            process = await asyncio.create_subprocess_exec(
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(cwd) if cwd else None,
                env=process_env,
            )
        except OSError as e:
            raise EngineUnavailableError(f"Could not run {args[0]}: {e}", command=command) from e

        try:
            stdout_bytes, stderr_bytes = await asyncio.wait_for(process.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            raise EngineUnavailableError(f"Command timed out after {timeout}s: {command}", command=command)
        except asyncio.CancelledError:
            if process.returncode is None:
                process.kill()
                await process.wait()
            raise

        stdout = stdout_bytes.decode('utf-8', errors='replace')
        stderr = stderr_bytes.decode('utf-8', errors='replace')

        self._logger.debug(f"Command completed with return code: {process.returncode}")
        if stderr and process.returncode != 0:
            self._logger.debug(f"stderr: {stderr.strip()[:500]}")

        return stdout, stderr, process.returncode


# Global execution engine instance
execution_engine = ExecutionEngine()
