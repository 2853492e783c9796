"""
supervisor.py - Lifecycle management for one external agent process.

The supervisor spawns an agent with stdout/stderr piped, forwards each output
line as an OutputEvent through a bounded queue, and guarantees that the
process is reaped and its reader tasks are joined before a handle is released.

Lifecycle of one handle:

    spawn() ──► RUNNING ──► streams drained + exit ───────────► COMPLETED
                  │
                  ├─ deadline passes ─► SIGTERM ─► grace ─► SIGKILL ─► TIMED_OUT
                  │
                  └─ capture failure / cancellation ─► (same sequence) ─► KILLED

Every path ends with: reap (await exit status) -> drain queue -> cancel and
join reader tasks. On platforms without POSIX process groups termination is
immediate, with no grace period.

Usage:
    supervisor = ProcessSupervisor()
    async with supervisor.supervise("claude", args, env, cwd, timeout=120) as handle:
        outcome = await supervisor.wait_or_terminate(handle)
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import signal
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import (
    AsyncIterator,
    Callable,
    Dict,
    List,
    Optional,
    Sequence,
    Set,
    Tuple,
    Union,
)

from agentcast.config import runtime_config

from .errors import AgentTimeoutError, ProcessIOError, SpawnError
from .stream_events import OutputEvent, parse_stream_line, result_text, usage

logger = logging.getLogger(__name__)

POSIX = os.name == "posix"

# Upper bound on how long teardown waits for readers to reach end-of-stream
# after the process has been reaped.
_DRAIN_TIMEOUT = 5.0
_DISCARD_CHUNK = 64 * 1024
_KILL_SIGNAL = getattr(signal, "SIGKILL", signal.SIGTERM)

EventCallback = Callable[[OutputEvent], None]


class ProcessStatus(str, Enum):
    NOT_STARTED = "not_started"
    RUNNING = "running"
    COMPLETED = "completed"
    TIMED_OUT = "timed_out"
    KILLED = "killed"


@dataclass
class ExitOutcome:
    """Result of one supervised process run.

    ``stdout`` and ``stderr`` hold every captured line (newline-joined) and
    are complete: they are assembled only after both readers reached
    end-of-stream or the process was terminated.
    """

    pid: Optional[int]
    status: ProcessStatus
    exit_code: Optional[int]
    stdout: str
    stderr: str
    duration: float
    events: List[OutputEvent] = field(default_factory=list)
    io_error: Optional[ProcessIOError] = None
    forced_kill: bool = False

    @property
    def timed_out(self) -> bool:
        return self.status == ProcessStatus.TIMED_OUT

    @property
    def succeeded(self) -> bool:
        return self.status == ProcessStatus.COMPLETED and self.exit_code == 0

    @property
    def usage(self) -> Optional[Tuple[int, int]]:
        """Last token usage the agent reported, if any."""
        reported = None
        for event in self.events:
            found = usage(event)
            if found is not None:
                reported = found
        return reported

    @property
    def final_text(self) -> str:
        """The agent's final result message, or all stdout when there is none."""
        for event in reversed(self.events):
            text = result_text(event)
            if text is not None:
                return text
        return self.stdout


# =============================================================================
# Queue items
# =============================================================================


@dataclass(frozen=True)
class _StreamFailed:
    stream: str
    error: ProcessIOError


@dataclass(frozen=True)
class _StreamClosed:
    stream: str


_QueueItem = Union[OutputEvent, _StreamFailed, _StreamClosed]


class ProcessHandle:
    """One spawned agent process and the tasks reading its output.

    Owned by the ProcessSupervisor that created it. Not reusable.
    """

    def __init__(
        self,
        process: asyncio.subprocess.Process,
        binary_path: str,
        timeout: float,
        capacity: int,
    ):
        loop = asyncio.get_running_loop()
        self.process = process
        self.pid: Optional[int] = process.pid
        self.binary_path = binary_path
        self.timeout = timeout
        self.started_at = loop.time()
        self.deadline = self.started_at + timeout
        self.finished_at: Optional[float] = None
        self.status = ProcessStatus.RUNNING
        self.exit_code: Optional[int] = None
        self.io_error: Optional[ProcessIOError] = None
        self.forced_kill = False

        self.queue: "asyncio.Queue[_QueueItem]" = asyncio.Queue(maxsize=capacity)
        self.readers: List[asyncio.Task] = []
        self.stdin_task: Optional[asyncio.Task] = None
        self.open_streams: Set[str] = {"stdout", "stderr"}
        self.events: List[OutputEvent] = []
        self.on_event: Optional[EventCallback] = None
        self.closed = False

    def remaining(self) -> float:
        return self.deadline - asyncio.get_running_loop().time()

    @property
    def tasks(self) -> List[asyncio.Task]:
        tasks = list(self.readers)
        if self.stdin_task is not None:
            tasks.append(self.stdin_task)
        return tasks

    def consume(self, item: _QueueItem) -> Optional[OutputEvent]:
        """Apply one queue item to the handle; return it if it is an event."""
        if isinstance(item, _StreamClosed):
            self.open_streams.discard(item.stream)
            return None
        if isinstance(item, _StreamFailed):
            if self.io_error is None:
                self.io_error = item.error
            return None
        self.events.append(item)
        if item.parse_error:
            logger.debug("Unparseable %s line from pid %s: %s", item.stream, self.pid, item.parse_error)
        if self.on_event is not None:
            self.on_event(item)
        return item

    def outcome(self) -> ExitOutcome:
        end = self.finished_at if self.finished_at is not None else asyncio.get_running_loop().time()
        return ExitOutcome(
            pid=self.pid,
            status=self.status,
            exit_code=self.exit_code,
            stdout="\n".join(e.text for e in self.events if e.stream == "stdout"),
            stderr="\n".join(e.text for e in self.events if e.stream == "stderr"),
            duration=end - self.started_at,
            events=list(self.events),
            io_error=self.io_error,
            forced_kill=self.forced_kill,
        )


# =============================================================================
# Supervisor
# =============================================================================


class ProcessSupervisor:
    """Spawns and supervises agent processes.

    Args:
        grace_period: Seconds between SIGTERM and SIGKILL.
        channel_capacity: Bound of each handle's event queue.
        max_output_bytes: Per-stream capture limit.
        max_line_bytes: Longest single line a reader buffers.
    """

    def __init__(
        self,
        grace_period: Optional[float] = None,
        channel_capacity: Optional[int] = None,
        max_output_bytes: Optional[int] = None,
        max_line_bytes: Optional[int] = None,
    ):
        self.grace_period = (
            grace_period if grace_period is not None else runtime_config.get_grace_period()
        )
        self.channel_capacity = (
            channel_capacity if channel_capacity is not None else runtime_config.get_channel_capacity()
        )
        self.max_output_bytes = (
            max_output_bytes if max_output_bytes is not None else runtime_config.get_max_output_bytes()
        )
        self.max_line_bytes = (
            max_line_bytes if max_line_bytes is not None else runtime_config.get_max_line_bytes()
        )
        if self.grace_period < 0:
            raise ValueError("grace_period must not be negative")
        if self.channel_capacity < 1:
            raise ValueError("channel_capacity must be at least 1")

    # -------------------------------------------------------------------------
    # Spawning
    # -------------------------------------------------------------------------

    async def spawn(
        self,
        binary_path: str,
        args: Sequence[str],
        env: Optional[Dict[str, str]] = None,
        cwd: Optional[Union[str, Path]] = None,
        timeout: Optional[float] = None,
        input: Optional[bytes] = None,
    ) -> ProcessHandle:
        """Start ``binary_path`` with stdout/stderr piped.

        Args:
            binary_path: Executable to run.
            args: Arguments after the executable.
            env: Variables layered over the host environment.
            cwd: Working directory; must exist and be writable.
            timeout: Seconds until the process is terminated.
            input: Bytes written to stdin before it is closed. Without it
                stdin is /dev/null.

        Raises:
            ValueError: Non-positive timeout.
            SpawnError: The binary could not be executed, or the working
                directory is missing or not writable.
        """
        if timeout is None:
            timeout = runtime_config.get_attempt_timeout()
        if timeout <= 0:
            raise ValueError("timeout must be positive")
        if cwd is not None:
            cwd_path = Path(cwd)
            if not cwd_path.is_dir():
                raise SpawnError(binary_path, NotADirectoryError(f"working directory does not exist: {cwd_path}"))
            if not os.access(cwd_path, os.W_OK):
                raise SpawnError(binary_path, PermissionError(f"working directory is not writable: {cwd_path}"))

        full_env = dict(os.environ)
        full_env.update(env or {})

        kwargs = {}
        if POSIX:
            # Own process group, so termination reaches helpers the agent starts.
            kwargs["start_new_session"] = True

        try:
            process = await asyncio.create_subprocess_exec(
                binary_path,
                *args,
                stdin=asyncio.subprocess.PIPE if input is not None else asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(cwd) if cwd is not None else None,
                env=full_env,
                limit=self.max_line_bytes,
                **kwargs,
            )
        except OSError as e:
            raise SpawnError(binary_path, e) from e

        handle = ProcessHandle(process, binary_path, timeout, self.channel_capacity)
        handle.readers = [
            asyncio.create_task(self._pump(handle, process.stdout, "stdout")),
            asyncio.create_task(self._pump(handle, process.stderr, "stderr")),
        ]
        if input is not None:
            handle.stdin_task = asyncio.create_task(self._feed(process, input))

        logger.debug("Spawned %s (pid %s, timeout %.1fs)", binary_path, handle.pid, timeout)
        return handle

    async def _feed(self, process: asyncio.subprocess.Process, data: bytes) -> None:
        assert process.stdin is not None
        try:
            process.stdin.write(data)
            await process.stdin.drain()
        except (BrokenPipeError, ConnectionResetError):
            logger.debug("Agent pid %s closed stdin before reading all input", process.pid)
        finally:
            process.stdin.close()

    async def _pump(
        self,
        handle: ProcessHandle,
        reader: Optional[asyncio.StreamReader],
        name: str,
    ) -> None:
        """Forward lines from one stream into the handle's queue.

        Blocks on the queue when it is full. After a capture failure the
        stream is still read (and discarded) to end-of-stream so the pipe
        never stalls the child.
        """
        if reader is None:
            await handle.queue.put(_StreamClosed(name))
            return

        captured = 0
        error: Optional[ProcessIOError] = None
        try:
            while True:
                try:
                    line = await reader.readline()
                except ValueError:
                    error = ProcessIOError(name, f"line longer than {self.max_line_bytes} bytes")
                    break
                if not line:
                    break
                captured += len(line)
                if captured > self.max_output_bytes:
                    error = ProcessIOError(name, f"output exceeded {self.max_output_bytes} bytes")
                    break
                event = parse_stream_line(line.decode("utf-8", errors="replace"), name)
                await handle.queue.put(event)

            if error is not None:
                await handle.queue.put(_StreamFailed(name, error))
                while await reader.read(_DISCARD_CHUNK):
                    pass
        except OSError as e:
            await handle.queue.put(_StreamFailed(name, ProcessIOError(name, str(e))))

        await handle.queue.put(_StreamClosed(name))

    # -------------------------------------------------------------------------
    # Reading
    # -------------------------------------------------------------------------

    async def read_events(self, handle: ProcessHandle) -> AsyncIterator[OutputEvent]:
        """Yield output events in emission order until both streams close.

        Raises:
            AgentTimeoutError: The handle's deadline passed.
            ProcessIOError: A stream could not be captured.
        """
        while handle.open_streams:
            remaining = handle.remaining()
            if remaining <= 0:
                raise AgentTimeoutError(handle.timeout, handle.pid)
            try:
                item = await asyncio.wait_for(handle.queue.get(), remaining)
            except asyncio.TimeoutError:
                raise AgentTimeoutError(handle.timeout, handle.pid) from None
            event = handle.consume(item)
            if handle.io_error is not None:
                raise handle.io_error
            if event is not None:
                yield event

    async def wait_or_terminate(
        self, handle: ProcessHandle, on_event: Optional[EventCallback] = None
    ) -> ExitOutcome:
        """Wait for exit and end-of-stream, terminating on timeout.

        Returns only after the process is reaped and the readers are joined.
        Timeouts and capture failures are reported in the outcome, not raised.
        """
        handle.on_event = on_event
        status = ProcessStatus.KILLED
        try:
            async for _event in self.read_events(handle):
                pass
            if handle.process.returncode is None:
                remaining = handle.remaining()
                if remaining <= 0:
                    raise AgentTimeoutError(handle.timeout, handle.pid)
                try:
                    await asyncio.wait_for(handle.process.wait(), remaining)
                except asyncio.TimeoutError:
                    raise AgentTimeoutError(handle.timeout, handle.pid) from None
            status = ProcessStatus.COMPLETED
        except AgentTimeoutError as e:
            logger.warning("Agent pid %s: %s; terminating", handle.pid, e)
            status = ProcessStatus.TIMED_OUT
        except ProcessIOError as e:
            logger.warning("Agent pid %s: %s; terminating", handle.pid, e)
            status = ProcessStatus.KILLED
        finally:
            await self._shutdown(handle, status)
        return handle.outcome()

    # -------------------------------------------------------------------------
    # Termination
    # -------------------------------------------------------------------------

    @contextlib.asynccontextmanager
    async def supervise(
        self,
        binary_path: str,
        args: Sequence[str],
        env: Optional[Dict[str, str]] = None,
        cwd: Optional[Union[str, Path]] = None,
        timeout: Optional[float] = None,
        input: Optional[bytes] = None,
    ) -> AsyncIterator[ProcessHandle]:
        """Spawn a process whose teardown is guaranteed when the block exits."""
        handle = await self.spawn(binary_path, args, env=env, cwd=cwd, timeout=timeout, input=input)
        try:
            yield handle
        finally:
            await self._shutdown(handle, ProcessStatus.KILLED)

    async def run(
        self,
        binary_path: str,
        args: Sequence[str],
        env: Optional[Dict[str, str]] = None,
        cwd: Optional[Union[str, Path]] = None,
        timeout: Optional[float] = None,
        input: Optional[bytes] = None,
        on_event: Optional[EventCallback] = None,
    ) -> ExitOutcome:
        """Spawn, wait (or terminate), and return the outcome."""
        async with self.supervise(binary_path, args, env, cwd, timeout, input) as handle:
            return await self.wait_or_terminate(handle, on_event=on_event)

    async def _shutdown(self, handle: ProcessHandle, status: ProcessStatus) -> None:
        """Terminate if needed, reap, drain, then cancel and join the tasks.

        Idempotent. ``status`` applies only if the process is still running.
        """
        if handle.closed:
            return
        handle.closed = True

        drainer = asyncio.create_task(self._drain(handle))
        try:
            if handle.process.returncode is None:
                await self._terminate(handle)
                handle.status = status
            else:
                # Already exited on its own; still await the exit status.
                await handle.process.wait()
                if POSIX:
                    # Leader is gone; helpers left in its group go with it.
                    with contextlib.suppress(ProcessLookupError, PermissionError):
                        os.killpg(handle.pid, _KILL_SIGNAL)
                if status != ProcessStatus.TIMED_OUT:
                    status = ProcessStatus.COMPLETED
                handle.status = status
            try:
                await asyncio.wait_for(asyncio.shield(drainer), _DRAIN_TIMEOUT)
            except asyncio.TimeoutError:
                logger.warning("Output of pid %s did not reach end-of-stream after exit", handle.pid)
        except asyncio.CancelledError:
            # Cancelled mid-teardown: skip the grace period but still reap.
            handle.forced_kill = True
            handle.status = ProcessStatus.KILLED
            self._send_signal(handle, _KILL_SIGNAL)
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(handle.process.wait(), _DRAIN_TIMEOUT)
            raise
        finally:
            drainer.cancel()
            for task in handle.tasks:
                task.cancel()
            await asyncio.gather(drainer, *handle.tasks, return_exceptions=True)
            handle.exit_code = handle.process.returncode
            handle.finished_at = asyncio.get_running_loop().time()
            logger.debug(
                "Agent pid %s finished: status=%s exit_code=%s",
                handle.pid,
                handle.status.value,
                handle.exit_code,
            )

    async def _drain(self, handle: ProcessHandle) -> None:
        while handle.open_streams:
            handle.consume(await handle.queue.get())

    async def _terminate(self, handle: ProcessHandle) -> None:
        """SIGTERM, wait the grace period, SIGKILL, then reap."""
        process = handle.process
        if POSIX and self.grace_period > 0:
            self._send_signal(handle, signal.SIGTERM)
            try:
                await asyncio.wait_for(process.wait(), self.grace_period)
            except asyncio.TimeoutError:
                logger.warning(
                    "Agent pid %s ignored SIGTERM for %.1fs; sending SIGKILL",
                    handle.pid,
                    self.grace_period,
                )
                handle.forced_kill = True
                self._send_signal(handle, _KILL_SIGNAL)
        else:
            handle.forced_kill = True
            self._send_signal(handle, _KILL_SIGNAL)
        await process.wait()

    def _send_signal(self, handle: ProcessHandle, sig: int) -> None:
        process = handle.process
        if process.returncode is not None:
            return
        try:
            if POSIX:
                os.killpg(os.getpgid(process.pid), sig)
            else:
                process.kill()
        except ProcessLookupError:
            pass
        except PermissionError:
            # Fall back to the leader alone.
            try:
                process.send_signal(sig)
            except ProcessLookupError:
                pass

