"""Subprocess transport speaking newline-delimited JSON on stdio.

Launches the agent (or bridge) executable and exposes:
- ``frames``: decoded stdout frames, in pipe order, on a single-consumer Channel
- ``stderr``: stderr lines (overlong ones truncated), the last 1000 replayed
  to late subscribers
- ``send(frame)``: one escaped line written to stdin
- ``kill()`` / ``exit_code`` / ``wait()``: lifecycle

Wire format:
- Outbound: JSON object + newline to subprocess stdin
- Inbound: JSON object + newline from subprocess stdout; lines that fail to
  decode are logged and skipped
"""

from __future__ import annotations

import asyncio
import codecs
import contextlib
import os
from dataclasses import dataclass, field
from typing import Any

from ..channels import Broadcast, Channel
from ..config import DEFAULT_EXECUTABLE, ENV_EXECUTABLE
from ..errors import DisposedError, SpawnError
from ..options import PermissionMode, SessionOptions
from ..protocol.framing import LineFramer, decode_frames, encode_frame
from ..sdk_logger import SdkLogger

STDERR_HISTORY = 1000
READ_CHUNK_SIZE = 64 * 1024
STDERR_LINE_LIMIT = 16 * 1024
STDERR_TRUNCATED = "[truncated]"


@dataclass
class CliProcessConfig:
    """Construction parameters for a claude CLI process.

    These are passed through verbatim as command-line flags; the protocol
    engine does not interpret them.
    """

    cwd: str | None = None
    executable_path: str | None = None
    # Inserted between the executable and the CLI flags, e.g. a script for an interpreter
    executable_args: list[str] = field(default_factory=list)
    model: str | None = None
    permission_mode: PermissionMode | str | None = None
    setting_sources: list[str] | None = None
    max_turns: int | None = None
    max_budget_usd: float | None = None
    resume: str | None = None
    verbose: bool = False
    include_partial_messages: bool = False
    extra_args: list[str] = field(default_factory=list)
    env: dict[str, str] | None = None

    @property
    def resolved_executable(self) -> str:
        """Explicit path, else CLAUDE_CODE_PATH, else ``claude``."""
        if self.executable_path:
            return self.executable_path
        return os.getenv(ENV_EXECUTABLE) or DEFAULT_EXECUTABLE

    @classmethod
    def from_options(
        cls,
        cwd: str | None,
        options: SessionOptions | None = None,
        executable_path: str | None = None,
    ) -> CliProcessConfig:
        options = options or SessionOptions()
        return cls(
            cwd=cwd,
            executable_path=executable_path,
            model=options.model,
            permission_mode=options.permission_mode,
            setting_sources=options.setting_sources,
            max_turns=options.max_turns,
            max_budget_usd=options.max_budget_usd,
            resume=options.resume,
            include_partial_messages=bool(options.include_partial_messages),
        )

    def build_arguments(self) -> list[str]:
        args = [
            "--output-format",
            "stream-json",
            "--verbose",
            "--input-format",
            "stream-json",
            "--permission-prompt-tool",
            "stdio",
        ]
        if self.model is not None:
            args += ["--model", self.model]
        if self.permission_mode is not None:
            mode = self.permission_mode
            args += ["--permission-mode", mode.value if isinstance(mode, PermissionMode) else mode]
        if self.setting_sources:
            args += ["--setting-sources", ",".join(self.setting_sources)]
        if self.max_turns is not None:
            args += ["--max-turns", str(self.max_turns)]
        if self.max_budget_usd is not None:
            args += ["--max-budget-usd", str(self.max_budget_usd)]
        if self.resume is not None:
            args += ["--resume", self.resume]
        if self.verbose:
            args.append("--verbose")
        if self.include_partial_messages:
            args.append("--include-partial-messages")
        args += self.extra_args
        return args

    def command(self) -> list[str]:
        return [self.resolved_executable, *self.executable_args, *self.build_arguments()]


class JsonlProcess:
    """One subprocess exchanging JSON frames over stdin/stdout.

    A single reader task owns stdout, so frames are delivered in exactly the
    order the pipe produced them. Writes go out as one complete line each.
    """

    def __init__(
        self,
        process: asyncio.subprocess.Process,
        logger: SdkLogger | None = None,
        session_id: str | None = None,
    ) -> None:
        self._process = process
        self._logger = logger or SdkLogger.null()
        self.session_id = session_id

        self._framer = LineFramer()
        self._frames: Channel[dict[str, Any]] = Channel()
        self._stderr: Broadcast[str] = Broadcast(history=STDERR_HISTORY)
        self._killed = False

        loop = asyncio.get_running_loop()
        self._exit: asyncio.Future[int] = loop.create_future()
        self._stdout_task = asyncio.create_task(self._read_stdout())
        self._stderr_task = asyncio.create_task(self._read_stderr())
        self._wait_task = asyncio.create_task(self._wait_for_exit())

    @classmethod
    async def spawn(
        cls,
        command: list[str],
        cwd: str | None = None,
        env: dict[str, str] | None = None,
        logger: SdkLogger | None = None,
    ) -> JsonlProcess:
        """Launch ``command`` with piped stdio.

        Raises:
            SpawnError: If the executable cannot be started.
        """
        logger = logger or SdkLogger.null()
        full_env = {**os.environ, **env} if env else None
        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=cwd,
                env=full_env,
            )
        except OSError as e:
            logger.error(f"Failed to start {command[0]}: {e}")
            raise SpawnError(f"Failed to start {command[0]}: {e}") from e

        logger.info(f"Launched subprocess: {command[0]} (pid={process.pid})")
        return cls(process, logger=logger)

    @classmethod
    async def spawn_cli(
        cls, config: CliProcessConfig, logger: SdkLogger | None = None
    ) -> JsonlProcess:
        return await cls.spawn(config.command(), cwd=config.cwd, env=config.env, logger=logger)

    # Properties

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def frames(self) -> Channel[dict[str, Any]]:
        """Decoded stdout frames. Closed when stdout reaches EOF."""
        return self._frames

    @property
    def stderr_lines(self) -> list[str]:
        """The most recent stderr lines (bounded)."""
        return self._stderr.history

    @property
    def exit_code(self) -> int | None:
        return self._process.returncode

    @property
    def is_running(self) -> bool:
        return not self._killed and self._process.returncode is None

    @property
    def killed(self) -> bool:
        return self._killed

    def stderr(self, replay: bool = True) -> Channel[str]:
        """Subscribe to stderr lines, replaying the buffered ones first."""
        return self._stderr.subscribe(replay=replay)

    # Lifecycle

    async def wait(self) -> int:
        return await asyncio.shield(self._exit)

    async def exited_within(self, seconds: float) -> bool:
        """True if the process exits within ``seconds``."""
        try:
            await asyncio.wait_for(asyncio.shield(self._exit), timeout=seconds)
        except TimeoutError:
            return False
        return True

    async def wait_streams(self, timeout: float = 1.0) -> None:
        """Give stdout and stderr up to ``timeout`` to reach EOF."""
        readers = asyncio.gather(
            asyncio.shield(self._stdout_task), asyncio.shield(self._stderr_task)
        )
        try:
            await asyncio.wait_for(readers, timeout=timeout)
        except TimeoutError:
            self._logger.debug("Output streams still open", session_id=self.session_id)

    def send(self, frame: dict[str, Any]) -> None:
        """Write one frame as a single line.

        Raises:
            DisposedError: If the process was killed or stdin is closed.
        """
        stdin = self._process.stdin
        if self._killed or stdin is None or stdin.is_closing():
            raise DisposedError("Process has been killed")

        self._logger.log_outgoing(frame, session_id=self.session_id)
        stdin.write(encode_frame(frame))

    async def drain(self) -> None:
        """Wait for buffered stdin data to be flushed."""
        stdin = self._process.stdin
        if stdin is None or stdin.is_closing():
            return
        with contextlib.suppress(ConnectionResetError, BrokenPipeError):
            await stdin.drain()

    async def kill(self, timeout: float = 2.0) -> None:
        """Terminate the process, killing it if it outlives ``timeout``. Idempotent."""
        if self._killed:
            return
        self._killed = True

        stdin = self._process.stdin
        if stdin is not None and not stdin.is_closing():
            stdin.close()

        if self._process.returncode is None:
            with contextlib.suppress(ProcessLookupError):
                self._process.terminate()
            try:
                await asyncio.wait_for(self.wait(), timeout=timeout)
            except TimeoutError:
                with contextlib.suppress(ProcessLookupError):
                    self._process.kill()
                await self.wait()
            self._logger.info(
                f"Subprocess terminated (pid={self._process.pid})", session_id=self.session_id
            )

        # Readers finish at EOF; a grandchild holding the pipes open must not block us
        for task in (self._stdout_task, self._stderr_task):
            if not task.done():
                try:
                    await asyncio.wait_for(task, timeout=timeout)
                except TimeoutError:
                    task.cancel()
                    with contextlib.suppress(asyncio.CancelledError):
                        await task

        self._frames.close()
        self._stderr.close()

    # Background tasks

    async def _wait_for_exit(self) -> None:
        code = await self._process.wait()
        if not self._exit.done():
            self._exit.set_result(code)

    async def _read_stdout(self) -> None:
        stdout = self._process.stdout
        if stdout is None:
            self._frames.close()
            return
        try:
            while True:
                chunk = await stdout.read(READ_CHUNK_SIZE)
                if not chunk:
                    break
                self._deliver(self._framer.feed(chunk))
            self._deliver(self._framer.flush())
        except asyncio.CancelledError:
            pass
        finally:
            self._frames.close()

    def _deliver(self, lines: list[str]) -> None:
        for frame, error in decode_frames(lines):
            if error is not None:
                self._logger.error(
                    "Failed to parse JSON from process",
                    session_id=self.session_id,
                    data={"error": error.message, "line": error.line},
                )
                self._stderr.publish(f"[jsonl] Failed to parse JSON: {error.message}")
                continue
            self._logger.log_incoming(frame, session_id=self.session_id)
            self._frames.put(frame)

    async def _read_stderr(self) -> None:
        stderr = self._process.stderr
        if stderr is None:
            return
        # Chunked reads: readline() gives up on lines past the stream limit
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        line = ""
        truncated = False
        try:
            while True:
                chunk = await stderr.read(READ_CHUNK_SIZE)
                text = decoder.decode(chunk, final=not chunk)
                while True:
                    head, newline, text = text.partition("\n")
                    room = STDERR_LINE_LIMIT - len(line)
                    if len(head) > room:
                        head = head[:room]
                        truncated = True
                    line += head
                    if not newline:
                        break
                    self._publish_stderr(line, truncated)
                    line, truncated = "", False
                if not chunk:
                    break
            if line or truncated:
                self._publish_stderr(line, truncated)
        except asyncio.CancelledError:
            pass
        finally:
            self._stderr.close()

    def _publish_stderr(self, line: str, truncated: bool) -> None:
        line = line.rstrip("\r")
        if truncated:
            line += f" {STDERR_TRUNCATED}"
        self._logger.log_stderr(line, session_id=self.session_id)
        self._stderr.publish(line)
