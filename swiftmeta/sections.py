"""Locate the Swift metadata sections of a loaded module."""

import logging
from dataclasses import dataclass

from .binfmt import FileReader, ImageFormat, ImageHeader, image_format, parse_elf, parse_macho
from .host import Module, ModuleUnreadable

logger = logging.getLogger(__name__)

MACHO_SEGMENT = "__TEXT"
MACHO_TYPES = "__swift5_types"
MACHO_PROTOCOLS = "__swift5_protos"
MACHO_CONFORMANCES = "__swift5_proto"

ELF_TYPES = "swift5_type_metadata"
ELF_PROTOCOLS = "swift5_protocols"
ELF_CONFORMANCES = "swift5_protocol_conformances"


@dataclass(frozen=True, slots=True)
class SectionRange:
    """A byte range in the module's address space."""

    address: int
    size: int

    @property
    def end(self) -> int:
        return self.address + self.size


@dataclass(frozen=True, slots=True)
class SectionRanges:
    """Runtime ranges of the Swift metadata sections; absent sections are None."""

    types: SectionRange | None
    protocols: SectionRange | None
    conformances: SectionRange | None

    @property
    def empty(self) -> bool:
        return self.types is None and self.protocols is None and self.conformances is None


@dataclass(frozen=True)
class LoadedImage:
    """A module's parsed header plus the slide between file and runtime addresses."""

    header: ImageHeader
    slide: int

    def runtime_address(self, address: int) -> int:
        return address + self.slide


def module_reader(module: Module):
    """Return a file-offset reader that goes through the module's mapped header."""

    def read(offset: int, length: int) -> bytes:
        return module.read_bytes(module.base + offset, length)

    return read


def load_image(module: Module) -> LoadedImage:
    """Parse *module*'s header.

    Mach-O headers are read from the mapped image. ELF section headers are
    usually not mapped, so they are read from ``module.path``.
    """
    fmt = image_format(module.read_bytes(module.base, 4))
    if fmt == ImageFormat.MACHO:
        header = parse_macho(module_reader(module))
    else:
        if not module.path:
            raise ModuleUnreadable(f"ELF module {module.name} has no backing file")
        with FileReader(module.path) as read:
            header = parse_elf(read)
    return LoadedImage(header, module.base - header.preferred_base)


def _range(image: LoadedImage, name: str, segment: str | None) -> SectionRange | None:
    section = image.header.find_section(name, segment)
    if section is None or section.size == 0:
        return None
    return SectionRange(image.runtime_address(section.addr), section.size)


def locate_sections(module: Module) -> SectionRanges | None:
    """Find the Swift type, protocol and conformance sections of *module*.

    Returns None when the module carries no Swift metadata at all. Raises
    ModuleUnreadable when the header cannot be parsed.
    """
    image = load_image(module)
    if image.header.format == ImageFormat.MACHO:
        ranges = SectionRanges(
            types=_range(image, MACHO_TYPES, MACHO_SEGMENT),
            protocols=_range(image, MACHO_PROTOCOLS, MACHO_SEGMENT),
            conformances=_range(image, MACHO_CONFORMANCES, MACHO_SEGMENT),
        )
    else:
        ranges = SectionRanges(
            types=_range(image, ELF_TYPES, None),
            protocols=_range(image, ELF_PROTOCOLS, None),
            conformances=_range(image, ELF_CONFORMANCES, None),
        )

    if ranges.empty:
        logger.debug("No Swift metadata in %s", module.name)
        return None
    return ranges
