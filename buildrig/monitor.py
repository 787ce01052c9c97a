"""Interactive monitor commands for inspecting and controlling build sessions."""

from __future__ import annotations

import dataclasses
import json
from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import TextIO


class MonitorError(Exception):
    """Raised when a monitor command cannot be carried out."""


@dataclass
class InvokeConfig:
    """How to run a process in the interactive build container."""

    entrypoint: list[str] = field(default_factory=list)
    cmd: list[str] = field(default_factory=list)
    no_cmd: bool = False
    env: list[str] = field(default_factory=list)
    user: str = ""
    cwd: str = ""
    tty: bool = False
    rollback: bool = False
    initial: bool = False

    def copy(self) -> InvokeConfig:
        return dataclasses.replace(
            self,
            entrypoint=list(self.entrypoint),
            cmd=list(self.cmd),
            env=list(self.env),
        )


@dataclass
class ProcessInfo:
    """A process running in a session's container."""

    process_id: str
    invoke_config: InvokeConfig = field(default_factory=InvokeConfig)


@dataclass(frozen=True)
class CommandInfo:
    """Name and help texts of a monitor command."""

    name: str
    help_message: str
    help_message_long: str = ""


class Monitor(ABC):
    """Attaches to build sessions and the processes running inside them."""

    @abstractmethod
    def list_sessions(self) -> list[str]:
        """IDs of the known build sessions."""

    @abstractmethod
    def list_processes(self, session_id: str) -> list[ProcessInfo]:
        """Processes running in the given session."""

    @abstractmethod
    def disconnect_process(self, session_id: str, pid: str) -> None: ...

    @abstractmethod
    def kill(self) -> None:
        """Kill the build server the monitor is connected to."""

    @abstractmethod
    def rollback(self, config: InvokeConfig) -> str:
        """Re-run the interactive container with the step's rootfs; returns the process ID."""

    @abstractmethod
    def exec(self, config: InvokeConfig) -> str:
        """Run a process in the interactive container; returns the process ID."""

    @abstractmethod
    def attach(self, pid: str) -> None:
        """Attach IO to a process in the container."""

    @abstractmethod
    def attached_pid(self) -> str: ...

    @abstractmethod
    def detach(self) -> None:
        """Detach IO from the container."""

    @abstractmethod
    def disconnect_session(self, target_id: str) -> None: ...

    @abstractmethod
    def attach_session(self, ref: str) -> None: ...

    @abstractmethod
    def attached_session_id(self) -> str: ...


class Command(ABC):
    """A command available in the monitor console."""

    @abstractmethod
    def info(self) -> CommandInfo: ...

    @abstractmethod
    def run(self, args: Sequence[str]) -> None:
        """Execute the command; ``args[0]`` is the command name."""


def _quote(text: str) -> str:
    return json.dumps(text, ensure_ascii=False)


def _tab_format(rows: Sequence[Sequence[str]], minwidth: int, tabwidth: int, padding: int) -> str:
    """Align tab-separated cells with tab padding; the last cell of each row is free text."""
    widths: list[list[int]] = [[0] * (len(row) - 1) for row in rows]
    columns = max((len(row) - 1 for row in rows), default=0)
    for col in range(columns):
        run: list[int] = []
        for index in [*range(len(rows)), None]:
            if index is not None and len(rows[index]) - 1 > col:
                run.append(index)
                continue
            if run:
                width = max([minwidth, *(len(rows[i][col]) + padding for i in run)])
                for i in run:
                    widths[i][col] = width
                run = []

    lines = []
    for row, row_widths in zip(rows, widths):
        parts = []
        for cell, width in zip(row, row_widths):
            cell_width = -(-width // tabwidth) * tabwidth
            parts.append(cell + "\t" * -(-(cell_width - len(cell)) // tabwidth))
        parts.append(row[-1])
        lines.append("".join(parts) + "\n")
    return "".join(lines)


def is_process_id(monitor: Monitor, ref: str) -> bool:
    """Whether ``ref`` names a process of the attached session."""
    session_id = monitor.attached_session_id()
    if not session_id:
        raise MonitorError("no attaching session")
    return any(p.process_id == ref for p in monitor.list_processes(session_id))


def _is_process_quiet(monitor: Monitor, ref: str) -> bool:
    # Any failure to look the process up means "not a process".
    try:
        return is_process_id(monitor, ref)
    except Exception:
        return False


def print_help(out: TextIO, commands: Mapping[str, Command], additional: Mapping[str, str]) -> None:
    """Print the one-line help of every command, sorted by name."""
    out.write("Available commands are:\n")
    rows = []
    for name in sorted([*commands, *additional]):
        if name in commands:
            message = commands[name].info().help_message
        else:
            message = additional[name]
        rows.append(["  " + name, message])
    out.write(_tab_format(rows, minwidth=0, tabwidth=8, padding=0))


def print_command_help(
    out: TextIO, name: str, commands: Mapping[str, Command], additional: Mapping[str, str]
) -> None:
    """Print the detailed help of one command, or the overview if it is unknown."""
    command = commands.get(name)
    if command is None:
        out.write(f"monitor: no help message for {_quote(name)}\n")
        print_help(out, commands, additional)
        return
    info = command.info()
    out.write(info.help_message + "\n")
    if info.help_message_long:
        out.write(info.help_message_long + "\n")


class AttachCommand(Command):
    def __init__(self, monitor: Monitor, stdout: TextIO) -> None:
        self.monitor = monitor
        self.stdout = stdout

    def info(self) -> CommandInfo:
        return CommandInfo(
            name="attach",
            help_message="attach to a buildx server or a process in the container",
            help_message_long="""
Usage:
  attach ID

ID is for a session (visible via list command) or a process (visible via ps command).
If you attached to a process, use Ctrl-a-c for switching the monitor to that process's STDIO.
""",
        )

    def run(self, args: Sequence[str]) -> None:
        if len(args) < 2:
            raise MonitorError("ID of session or process must be passed")
        ref = args[1]
        pid = ""
        if _is_process_quiet(self.monitor, ref):
            self.monitor.attach(ref)
            pid = ref
        if not pid:
            try:
                sessions = self.monitor.list_sessions()
            except Exception as exc:
                raise MonitorError(f"failed to get the list of sessions: {exc}") from exc
            if ref not in sessions:
                raise MonitorError(f"unknown ID: {_quote(ref)}")
            self.monitor.detach()
            self.monitor.attach_session(ref)
        self.stdout.write(
            f"Attached to process {_quote(pid)}. "
            "Press Ctrl-a-c to switch to the new container\n"
        )


class DisconnectCommand(Command):
    def __init__(self, monitor: Monitor) -> None:
        self.monitor = monitor

    def info(self) -> CommandInfo:
        return CommandInfo(
            name="disconnect",
            help_message=(
                "disconnect a client from a buildx server. "
                "Specific session ID can be specified an arg"
            ),
            help_message_long=f"""
Usage:
  disconnect [ID]

ID is for a session (visible via list command). Default is {_quote(self.monitor.attached_session_id())}.
""",
        )

    def run(self, args: Sequence[str]) -> None:
        target = self.monitor.attached_session_id()
        if len(args) >= 2:
            target = args[1]
        elif not target:
            raise MonitorError("no attaching session")
        if _is_process_quiet(self.monitor, target):
            session_id = self.monitor.attached_session_id()
            if not session_id:
                raise MonitorError("no attaching session")
            try:
                self.monitor.disconnect_process(session_id, target)
            except Exception as exc:
                raise MonitorError(f"disconnecting from process failed {target}") from exc
            return
        try:
            self.monitor.disconnect_session(target)
        except Exception as exc:
            raise MonitorError(f"disconnecting from session failed: {exc}") from exc


class ExecCommand(Command):
    def __init__(self, monitor: Monitor, invoke_config: InvokeConfig, stdout: TextIO) -> None:
        self.monitor = monitor
        self.invoke_config = invoke_config
        self.stdout = stdout

    def info(self) -> CommandInfo:
        return CommandInfo(
            name="exec",
            help_message="execute a process in the interactive container",
            help_message_long="""
Usage:
  exec COMMAND [ARG...]

COMMAND and ARG... will be executed in the container.
""",
        )

    def run(self, args: Sequence[str]) -> None:
        if not self.monitor.attached_session_id():
            raise MonitorError("no attaching session")
        if len(args) < 2:
            raise MonitorError("command must be passed")
        config = InvokeConfig(
            entrypoint=[args[1]],
            cmd=list(args[2:]),
            no_cmd=False,
            env=list(self.invoke_config.env),
            user=self.invoke_config.user,
            cwd=self.invoke_config.cwd,
            tty=True,
        )
        pid = self.monitor.exec(config)
        self.stdout.write(
            f"Process {_quote(pid)} started. Press Ctrl-a-c to switch to that process.\n"
        )


class KillCommand(Command):
    def __init__(self, monitor: Monitor) -> None:
        self.monitor = monitor

    def info(self) -> CommandInfo:
        return CommandInfo(
            name="kill",
            help_message="kill buildx server",
            help_message_long="""
Usage:
  kill

Kills the currently connecting buildx server process.
""",
        )

    def run(self, args: Sequence[str]) -> None:
        try:
            self.monitor.kill()
        except Exception as exc:
            raise MonitorError(f"failed to kill: {exc}") from exc


class ListCommand(Command):
    def __init__(self, monitor: Monitor, stdout: TextIO) -> None:
        self.monitor = monitor
        self.stdout = stdout

    def info(self) -> CommandInfo:
        return CommandInfo(
            name="list",
            help_message="list buildx sessions",
            help_message_long="""
Usage:
  list
""",
        )

    def run(self, args: Sequence[str]) -> None:
        sessions = sorted(self.monitor.list_sessions())
        rows = [["ID", "CURRENT_SESSION"]]
        for ref in sessions:
            current = ref == self.monitor.attached_session_id()
            rows.append([f"{ref:<20}", str(current).lower()])
        self.stdout.write(_tab_format(rows, minwidth=1, tabwidth=8, padding=1))


class PsCommand(Command):
    def __init__(self, monitor: Monitor, stdout: TextIO) -> None:
        self.monitor = monitor
        self.stdout = stdout

    def info(self) -> CommandInfo:
        return CommandInfo(
            name="ps",
            help_message='list processes invoked by "exec". Use "attach" to attach IO to that process',
            help_message_long="""
Usage:
  ps
""",
        )

    def run(self, args: Sequence[str]) -> None:
        ref = self.monitor.attached_session_id()
        if not ref:
            raise MonitorError("no attaching session")
        processes = self.monitor.list_processes(ref)
        rows = [["PID", "CURRENT_SESSION", "COMMAND"]]
        for proc in processes:
            current = proc.process_id == self.monitor.attached_pid()
            command = [*proc.invoke_config.entrypoint, *proc.invoke_config.cmd]
            rows.append(
                [f"{proc.process_id:<20}", str(current).lower(), "[" + " ".join(command) + "]"]
            )
        self.stdout.write(_tab_format(rows, minwidth=1, tabwidth=8, padding=1))


class RollbackCommand(Command):
    def __init__(self, monitor: Monitor, invoke_config: InvokeConfig, stdout: TextIO) -> None:
        self.monitor = monitor
        self.invoke_config = invoke_config
        self.stdout = stdout

    def info(self) -> CommandInfo:
        return CommandInfo(
            name="rollback",
            help_message="re-runs the interactive container with the step's rootfs contents",
            help_message_long="""
Usage:
  rollback [FLAGS] [COMMAND] [ARG...]

Flags:
  --init Run the container with the initial rootfs of that step.

COMMAND and ARG... will be executed in the container.
""",
        )

    def run(self, args: Sequence[str]) -> None:
        if not self.monitor.attached_session_id():
            raise MonitorError("no attaching session")
        config = self.invoke_config.copy()
        if len(args) >= 2:
            cmds = list(args[1:])
            if cmds[0] == "--init":
                config.initial = True
                cmds = cmds[1:]
            if cmds:
                config.entrypoint = [cmds[0]]
                config.cmd = cmds[1:]
                config.no_cmd = False
        pid = self.monitor.rollback(config)
        self.stdout.write(
            f"Interactive container was restarted with process {_quote(pid)}. "
            "Press Ctrl-a-c to switch to the new container\n"
        )