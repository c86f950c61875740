"""Enumerate a module's exported Swift symbols, demangled."""

import logging
from collections.abc import Iterator
from dataclasses import dataclass

from dataclasses_json import DataClassJsonMixin

from .binfmt import FileReader, ImageFormat, RawSymbol, iter_elf_symbols, iter_macho_symbols
from .demangle import DemangleRejected, Demangler
from .host import Module, ModuleUnreadable
from .sections import LoadedImage, load_image

logger = logging.getLogger(__name__)

MANGLED_PREFIXES = (b"$s", b"$S", b"$e", b"_T0")


@dataclass(frozen=True)
class SymbolRecord(DataClassJsonMixin):
    """An exported Swift symbol at its runtime address."""

    address: int
    mangled_name: str
    demangled: str


def is_mangled(name: bytes) -> bool:
    """Check whether *name* uses a Swift mangling prefix (with or without a leading ``_``)."""
    if name.startswith(MANGLED_PREFIXES):
        return True
    return name.startswith(b"_") and name[1:].startswith(MANGLED_PREFIXES)


def _macho_symbols(module: Module, image: LoadedImage) -> Iterator[RawSymbol]:
    symtab = image.header.symtab
    if symtab is None:
        return

    def read(offset: int, length: int) -> bytes:
        address = image.header.file_offset_to_address(offset)
        if address is None:
            raise ModuleUnreadable(f"File offset {offset:#x} of {module.name} is not mapped")
        return module.read_bytes(image.runtime_address(address), length)

    yield from iter_macho_symbols(read, symtab)


def iter_exported_symbols(module: Module) -> Iterator[tuple[int, bytes]]:
    """Yield ``(runtime address, name)`` for each exported symbol of *module*."""
    image = load_image(module)
    if image.header.format == ImageFormat.MACHO:
        for symbol in _macho_symbols(module, image):
            yield image.runtime_address(symbol.value), symbol.name
    else:
        with FileReader(module.path) as read:
            for symbol in iter_elf_symbols(read, image.header):
                yield image.runtime_address(symbol.value), symbol.name


def enumerate_demangled_symbols(module: Module, demangler: Demangler) -> list[SymbolRecord]:
    """Demangle every exported Swift symbol of *module*.

    Symbols the demangler rejects are left out. Raises ModuleUnreadable if
    the symbol table cannot be read.
    """
    records: list[SymbolRecord] = []
    for address, name in iter_exported_symbols(module):
        if not is_mangled(name):
            continue
        try:
            demangled = demangler(name)
        except DemangleRejected:
            logger.debug("Demangler rejected %r in %s", name, module.name)
            continue
        records.append(SymbolRecord(address, name.decode("utf-8", errors="replace"), demangled))
    return records
