"""Backend adapter that runs an external command."""

import asyncio
import json
import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from pydantic import ValidationError

from securechain.backends.base import BackendAdapter
from securechain.config.settings import BackendConfig
from securechain.errors import FatalBackendError, TransientBackendError
from securechain.models.contract import ContractArtifact
from securechain.models.finding import RawFinding

logger = logging.getLogger(__name__)


class CommandBackend(BackendAdapter):
    """Runs a wrapper executable that prints raw findings as JSON.

    The executable receives the artifact sources in a temporary
    directory. ``{target}`` and ``{timeout}`` in the configured
    arguments are replaced with that directory and the seconds left
    before the deadline. Standard output must be a JSON list of raw
    findings, or an object with a ``findings`` list.
    """

    def __init__(
        self,
        name: str,
        config: BackendConfig,
        environment: Optional[Dict[str, str]] = None,
    ):
        super().__init__(name, config)
        if not config.executable:
            raise FatalBackendError(f"Backend {name} has no executable configured")
        self.executable = config.executable
        self.environment = environment or {}

    def is_available(self) -> bool:
        """Check if the executable is on PATH."""
        return shutil.which(self.executable) is not None

    async def invoke(
        self,
        artifact: ContractArtifact,
        config: BackendConfig,
        cancel_event: asyncio.Event,
        deadline: float,
    ) -> List[RawFinding]:
        workdir = self.create_temp_directory()
        try:
            self.write_sources(artifact, workdir)
            remaining = max(1, int(deadline - asyncio.get_running_loop().time()))
            args = [
                arg.format(target=str(workdir), timeout=remaining) for arg in config.args
            ]
            stdout, stderr, returncode = await self._run_command(
                [self.executable, *args], cancel_event
            )
        finally:
            shutil.rmtree(workdir, ignore_errors=True)

        if returncode in config.options.get("fatal_exit_codes", ()):
            raise FatalBackendError(f"{self.name} exited with {returncode}: {stderr[:200]}")
        if returncode != 0:
            raise TransientBackendError(
                f"{self.name} exited with {returncode}: {stderr[:200]}"
            )
        return self.parse_output(stdout)

    def parse_output(self, output: str) -> List[RawFinding]:
        """Parse wrapper JSON output into raw findings.

        Raises:
            FatalBackendError: If the output is not valid finding JSON
        """
        if not output.strip():
            return []
        try:
            data = json.loads(output)
            if isinstance(data, dict):
                data = data.get("findings", [])
            if not isinstance(data, list):
                raise FatalBackendError(f"{self.name} output is not a list of findings")
            return [RawFinding.model_validate(item) for item in data]
        except (json.JSONDecodeError, ValidationError) as e:
            raise FatalBackendError(f"Failed to parse {self.name} output: {e}") from e

    async def _run_command(
        self,
        cmd: List[str],
        cancel_event: asyncio.Event,
    ) -> Tuple[str, str, int]:
        """Run a command and return output.

        The process is killed when ``cancel_event`` is set or when the
        awaiting task is cancelled (e.g. by a per-attempt timeout).

        Returns:
            Tuple of (stdout, stderr, return_code)
        """
        env = None
        if self.environment:
            env = {**os.environ, **self.environment}
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
            )
        except FileNotFoundError as e:
            raise FatalBackendError(f"Executable not found: {cmd[0]}") from e

        communicate = asyncio.ensure_future(process.communicate())
        cancelled = asyncio.ensure_future(cancel_event.wait())
        try:
            await asyncio.wait({communicate, cancelled}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            await self._kill(process, communicate)
            raise
        finally:
            cancelled.cancel()

        if not communicate.done():
            logger.info("event=backend_cancelled backend=%s", self.name)
            await self._kill(process, communicate)
            raise TransientBackendError(f"{self.name} was cancelled")

        stdout, stderr = communicate.result()
        stdout_str = stdout.decode("utf-8", errors="replace") if stdout else ""
        stderr_str = stderr.decode("utf-8", errors="replace") if stderr else ""
        return stdout_str, stderr_str, process.returncode

    async def _kill(self, process: asyncio.subprocess.Process, communicate: asyncio.Future) -> None:
        if process.returncode is None:
            try:
                process.kill()
            except ProcessLookupError:
                pass
        communicate.cancel()
        await process.wait()

    def create_temp_directory(self) -> Path:
        """Create a temporary directory for analysis."""
        return Path(tempfile.mkdtemp(prefix=f"securechain_{self.name}_"))

    def write_sources(self, artifact: ContractArtifact, dest: Path) -> None:
        """Write artifact sources below ``dest`` keeping relative paths."""
        for source in artifact.sources:
            dest_file = dest / source.file_path
            dest_file.parent.mkdir(parents=True, exist_ok=True)
            dest_file.write_text(source.content, encoding="utf-8")
