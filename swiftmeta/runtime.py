"""Entry points for callers that only want the results.

``Swift`` is the module-level facade: it reports whether a host is available
and enumerates types and demangled symbols through it.
"""

from .demangle import Demangler, find_demangler
from .host import Host, HostUnavailable, Module, current_modules, default_host, set_default_host
from .registry import Registry
from .symbols import SymbolRecord, enumerate_demangled_symbols
from .types import Type


class Runtime:
    """Facade over the host, the shared registry and the symbol enumerator."""

    def __init__(self, demangler: Demangler | None = None) -> None:
        self._demangler = demangler

    @property
    def available(self) -> bool:
        """Whether a host is configured and can enumerate modules."""
        try:
            current_modules(default_host())
        except HostUnavailable:
            return False
        return True

    @property
    def host(self) -> Host:
        return default_host()

    def configure(self, host: Host | None, demangler: Demangler | None = None) -> None:
        """Install *host* (and optionally *demangler*) and drop the shared registry."""
        set_default_host(host)
        if demangler is not None:
            self._demangler = demangler
        Registry.reset()

    @property
    def registry(self) -> Registry:
        return Registry.shared()

    def enumerate_types(self, module: Module | None = None) -> list[Type]:
        """Types of one module, or of every module the host currently has loaded.

        Raises HostUnavailable when no host is configured.
        """
        if module is None:
            return self.registry.types
        return Registry.from_modules([module]).types

    def enumerate_demangled_symbols(self, module: Module) -> list[SymbolRecord]:
        demangler = self._demangler
        if demangler is None:
            demangler = find_demangler()
            if demangler is None:
                raise HostUnavailable("No Swift demangler available")
            self._demangler = demangler
        return enumerate_demangled_symbols(module, demangler)


Swift = Runtime()
