#!/usr/bin/env python3
"""
NFTGATE Privileged Executor
===========================

The only path through which the control plane runs system binaries.

Features:
- Command allow-listing (only approved binaries can run)
- Suspicious argument warnings
- Audit logging of every execution
- Bounded in-memory history of recent executions for debugging

Author: Team NFTGATE
"""

import subprocess
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from loguru import logger

from .errors import CommandNotAllowed, TransportError


ALLOWED_COMMANDS = {
    "nft",  # NFTables firewall
}

SUSPICIOUS_TOKENS = (";", "|", "`", "$(")

HISTORY_SIZE = 100


@dataclass
class CommandExecution:
    """One recorded execution."""
    command: str
    args: List[str]
    success: bool
    error: str = ""
    returncode: Optional[int] = None
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict:
        return {
            "timestamp": self.timestamp.isoformat(),
            "command": self.command,
            "args": self.args,
            "success": self.success,
            "error": self.error,
            "returncode": self.returncode,
        }


@dataclass
class CommandResult:
    """Outcome of a command that ran to completion (any exit status)."""
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def message(self) -> str:
        """Best available error text, verbatim."""
        return (self.stderr or self.stdout).strip()


class PrivilegedExecutor:
    """
    Runs allow-listed commands and records them.

    A command that cannot be started (missing binary, permission denied,
    timeout) raises TransportError. A command that runs and exits non-zero
    is returned as a CommandResult; the caller decides what that means.
    """

    def __init__(self, timeout: float = 10.0, use_sudo: bool = False,
                 allowed_commands: Optional[set] = None):
        self.timeout = timeout
        self.use_sudo = use_sudo
        self.allowed_commands = set(allowed_commands or ALLOWED_COMMANDS)
        self._history: deque = deque(maxlen=HISTORY_SIZE)
        self._lock = threading.Lock()

    def validate(self, command: str, args: List[str]) -> None:
        """Reject commands outside the allow-list; warn on odd arguments."""
        if command not in self.allowed_commands:
            raise CommandNotAllowed(
                f"SECURITY: command '{command}' is not in the allowed command list"
            )

        for arg in args:
            if any(token in arg for token in SUSPICIOUS_TOKENS):
                logger.warning(f"[PRIV_EXEC] Suspicious argument detected: {arg}")

        if command == "nft" and not args:
            raise CommandNotAllowed("nft requires arguments")

    def run(self, command: str, args: List[str],
            input_text: Optional[str] = None) -> CommandResult:
        """
        Execute a command.

        Args:
            command: Binary name (must be allow-listed)
            args: Argument vector, passed without a shell
            input_text: Optional stdin

        Returns:
            CommandResult with exit code and captured output
        """
        self.validate(command, args)

        argv = [command] + list(args)
        if self.use_sudo:
            argv = ["sudo", "-n"] + argv

        try:
            proc = subprocess.run(
                argv,
                input=input_text,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except FileNotFoundError as e:
            self._record(command, args, False, f"not found: {e}")
            raise TransportError(f"{command} binary not available: {e}")
        except PermissionError as e:
            self._record(command, args, False, f"permission denied: {e}")
            raise TransportError(f"Permission denied running {command}: {e}")
        except subprocess.TimeoutExpired:
            self._record(command, args, False, f"timed out after {self.timeout}s")
            raise TransportError(f"{command} timed out after {self.timeout}s")

        result = CommandResult(
            returncode=proc.returncode,
            stdout=proc.stdout or "",
            stderr=proc.stderr or "",
        )
        self._record(command, args, result.ok,
                     "" if result.ok else result.message, proc.returncode)
        return result

    def _record(self, command: str, args: List[str], success: bool,
                error: str = "", returncode: Optional[int] = None) -> None:
        entry = CommandExecution(command=command, args=list(args), success=success,
                                 error=error, returncode=returncode)
        with self._lock:
            self._history.append(entry)

        joined = " ".join(args)
        if success:
            logger.info(f"[PRIV_EXEC] SUCCESS: {command} {joined}")
        else:
            logger.error(f"[PRIV_EXEC] FAILED: {command} {joined} - Error: {error}")

    def get_recent_commands(self, limit: int = 50) -> List[Dict]:
        """Most recent executions, newest first."""
        with self._lock:
            entries = list(self._history)
        return [e.to_dict() for e in reversed(entries)][:limit]
