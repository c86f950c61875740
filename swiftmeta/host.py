"""Host interface: module enumeration and memory access.

The decoder never touches process memory directly. Everything it reads goes
through a :class:`Module` supplied by a :class:`Host`, which keeps the core
usable both inside a live process (an embedding supplies the primitives) and
against binaries on disk (see :mod:`swiftmeta.images`).
"""

from collections.abc import Sequence
from typing import Protocol


class HostUnavailable(RuntimeError):
    """Raised when no host is configured or it cannot enumerate modules."""


class ModuleUnreadable(RuntimeError):
    """Raised when a module's memory or header cannot be read."""


class Module(Protocol):
    """A loaded binary image."""

    name: str
    path: str
    base: int
    pointer_size: int

    def read_bytes(self, address: int, length: int) -> bytes:
        """Read *length* bytes at *address*, raising ModuleUnreadable if unmapped."""
        ...


class Host(Protocol):
    """Supplies the modules currently loaded in the inspected process."""

    def current_modules(self) -> Sequence[Module]: ...


class StaticHost:
    """A host over a fixed list of modules."""

    def __init__(self, modules: Sequence[Module]) -> None:
        self._modules = list(modules)

    def current_modules(self) -> Sequence[Module]:
        return list(self._modules)


_default_host: Host | None = None


def set_default_host(host: Host | None) -> None:
    """Install the host used by Registry.shared() and the runtime facade."""
    global _default_host
    _default_host = host


def default_host() -> Host:
    """Return the configured host, raising HostUnavailable if there is none."""
    if _default_host is None:
        raise HostUnavailable("No module host configured; call set_default_host() first")
    return _default_host


def current_modules(host: Host) -> list[Module]:
    """Enumerate *host*'s modules, mapping host failures to HostUnavailable."""
    try:
        return list(host.current_modules())
    except HostUnavailable:
        raise
    except (OSError, RuntimeError) as exc:
        raise HostUnavailable(f"Host cannot enumerate modules: {exc}") from exc
