"""Demangler adapters.

Demangling itself is external. A demangler is any callable taking the
mangled bytes and returning the demangled text, raising DemangleRejected for
names it cannot parse.
"""

import logging
import shutil
import subprocess
from typing import Protocol

logger = logging.getLogger(__name__)

DEFAULT_TOOL = "swift-demangle"


class DemangleRejected(RuntimeError):
    """Raised when a demangler cannot parse a mangled name."""


class Demangler(Protocol):
    def __call__(self, mangled: bytes) -> str: ...


class SwiftDemangleTool:
    """Demangle by running ``swift-demangle --compact``."""

    def __init__(self, executable: str = DEFAULT_TOOL, timeout: float = 10.0) -> None:
        self.executable = executable
        self.timeout = timeout

    def __call__(self, mangled: bytes) -> str:
        name = mangled.decode("utf-8", errors="replace")
        try:
            result = subprocess.run(
                [self.executable, "--compact", name],
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=False,
            )
        except (OSError, subprocess.SubprocessError) as exc:
            raise DemangleRejected(f"{self.executable} failed on {name}: {exc}") from exc

        demangled = result.stdout.strip()
        if result.returncode != 0 or not demangled or demangled == name:
            raise DemangleRejected(name)
        return demangled

    def __repr__(self) -> str:
        return f"SwiftDemangleTool({self.executable!r})"


def find_demangler(executable: str | None = None) -> SwiftDemangleTool | None:
    """Return a demangler for *executable*, or the first one found on ``PATH``."""
    path = shutil.which(executable or DEFAULT_TOOL)
    if path is None:
        logger.debug("No %s found", executable or DEFAULT_TOOL)
        return None
    return SwiftDemangleTool(path)
