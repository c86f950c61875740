"""Mach-O and ELF header parsing.

Only what the metadata reader needs is decoded: segments, sections and the
symbol tables. Both parsers take a ``read(offset, length)`` callable over
file offsets so they work on files as well as on mapped headers.
"""

import struct
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from enum import StrEnum

from .host import ModuleUnreadable

Reader = Callable[[int, int], bytes]

MH_MAGIC_64 = 0xFEEDFACF
MH_MAGIC = 0xFEEDFACE
FAT_MAGIC = 0xCAFEBABE
ELF_MAGIC = b"\x7fELF"

LC_SEGMENT_64 = 0x19
LC_SYMTAB = 0x2

N_STAB = 0xE0
N_TYPE = 0x0E
N_EXT = 0x01
N_SECT = 0x0E

ELFCLASS64 = 2
ELFDATA2LSB = 1
PT_LOAD = 1
SHT_SYMTAB = 2
SHT_DYNSYM = 11
STB_GLOBAL = 1
STB_WEAK = 2
SHN_UNDEF = 0

_MACH_HEADER = struct.Struct("<IiiIIIII")
_LOAD_COMMAND = struct.Struct("<II")
_SEGMENT_COMMAND = struct.Struct("<II16sQQQQiiII")
_SECTION = struct.Struct("<16s16sQQIIIIIIII")
_SYMTAB_COMMAND = struct.Struct("<IIIIII")
_NLIST = struct.Struct("<IBBHQ")

_ELF_HEADER = struct.Struct("<16sHHIQQQIHHHHHH")
_PROGRAM_HEADER = struct.Struct("<IIQQQQQQ")
_SECTION_HEADER = struct.Struct("<IIQQQQIIQQ")
_ELF_SYMBOL = struct.Struct("<IBBHQQ")

PAGE_MASK = ~0xFFF


class ImageFormat(StrEnum):
    """Container format of a binary image."""

    MACHO = "macho"
    ELF = "elf"


@dataclass(frozen=True, slots=True)
class Segment:
    """A loadable segment: a virtual address range backed by file bytes."""

    name: str
    vmaddr: int
    vmsize: int
    fileoff: int
    filesize: int

    def contains(self, address: int, length: int = 1) -> bool:
        return self.vmaddr <= address and address + length <= self.vmaddr + self.vmsize


@dataclass(frozen=True, slots=True)
class Section:
    """A named section at its unslid virtual address."""

    segment: str
    name: str
    addr: int
    size: int
    offset: int
    type: int = 0
    link: int = 0
    entsize: int = 0


@dataclass(frozen=True, slots=True)
class SymbolTable:
    """Location of a Mach-O nlist table and its string table (file offsets)."""

    symoff: int
    nsyms: int
    stroff: int
    strsize: int


@dataclass(frozen=True, slots=True)
class RawSymbol:
    """A defined, externally visible symbol at its unslid address."""

    name: bytes
    value: int


@dataclass(frozen=True)
class ImageHeader:
    """The parts of a Mach-O or ELF header the reader uses."""

    format: ImageFormat
    pointer_size: int
    segments: tuple[Segment, ...]
    sections: tuple[Section, ...]
    symtab: SymbolTable | None = None

    @property
    def preferred_base(self) -> int:
        """Unslid address the module's ``base`` corresponds to."""
        if self.format == ImageFormat.MACHO:
            for segment in self.segments:
                if segment.name == "__TEXT":
                    return segment.vmaddr
            mapped = [s.vmaddr for s in self.segments if s.filesize]
            return min(mapped) if mapped else 0
        if not self.segments:
            return 0
        return min(s.vmaddr for s in self.segments) & PAGE_MASK

    def find_section(self, name: str, segment: str | None = None) -> Section | None:
        for section in self.sections:
            if section.name == name and (segment is None or section.segment == segment):
                return section
        return None

    def file_offset_to_address(self, offset: int) -> int | None:
        """Translate a file offset into an unslid virtual address."""
        for segment in self.segments:
            if segment.fileoff <= offset < segment.fileoff + segment.filesize:
                return segment.vmaddr + (offset - segment.fileoff)
        return None


def _cstr(raw: bytes) -> str:
    return raw.split(b"\x00", 1)[0].decode("ascii", errors="replace")


def _unpack(layout: struct.Struct, read: Reader, offset: int) -> tuple:
    data = read(offset, layout.size)
    if len(data) != layout.size:
        raise ModuleUnreadable(f"Truncated header at offset {offset:#x}")
    return layout.unpack(data)


def image_format(magic: bytes) -> ImageFormat:
    """Identify a thin 64-bit little-endian image from its first four bytes."""
    if magic == ELF_MAGIC:
        return ImageFormat.ELF
    if len(magic) == 4:
        value = int.from_bytes(magic, "little")
        if value == MH_MAGIC_64:
            return ImageFormat.MACHO
        if value == MH_MAGIC:
            raise ModuleUnreadable("32-bit Mach-O images are not supported")
        if int.from_bytes(magic, "big") == FAT_MAGIC:
            raise ModuleUnreadable("Fat Mach-O images must be thinned first")
    raise ModuleUnreadable(f"Unknown image magic {magic.hex()}")


def parse_macho(read: Reader) -> ImageHeader:
    """Parse a 64-bit Mach-O header and its load commands."""
    magic, _cpu, _sub, _filetype, ncmds, sizeofcmds, _flags, _ = _unpack(_MACH_HEADER, read, 0)
    if magic != MH_MAGIC_64:
        raise ModuleUnreadable(f"Bad Mach-O magic {magic:#x}")

    segments: list[Segment] = []
    sections: list[Section] = []
    symtab: SymbolTable | None = None

    offset = _MACH_HEADER.size
    end = offset + sizeofcmds
    for _ in range(ncmds):
        if offset + _LOAD_COMMAND.size > end:
            raise ModuleUnreadable("Load commands exceed sizeofcmds")
        cmd, cmdsize = _unpack(_LOAD_COMMAND, read, offset)
        if cmdsize < _LOAD_COMMAND.size or offset + cmdsize > end:
            raise ModuleUnreadable(f"Bad load command size {cmdsize} at {offset:#x}")

        if cmd == LC_SEGMENT_64:
            (_, _, segname, vmaddr, vmsize, fileoff, filesize, _, _, nsects, _) = _unpack(
                _SEGMENT_COMMAND, read, offset
            )
            if _SEGMENT_COMMAND.size + nsects * _SECTION.size > cmdsize:
                raise ModuleUnreadable("Segment sections exceed command size")
            segments.append(Segment(_cstr(segname), vmaddr, vmsize, fileoff, filesize))
            sect_offset = offset + _SEGMENT_COMMAND.size
            for _ in range(nsects):
                sectname, seg, addr, size, sect_fileoff, *_rest = _unpack(_SECTION, read, sect_offset)
                sections.append(Section(_cstr(seg), _cstr(sectname), addr, size, sect_fileoff))
                sect_offset += _SECTION.size
        elif cmd == LC_SYMTAB:
            _, _, symoff, nsyms, stroff, strsize = _unpack(_SYMTAB_COMMAND, read, offset)
            symtab = SymbolTable(symoff, nsyms, stroff, strsize)

        offset += cmdsize

    return ImageHeader(ImageFormat.MACHO, 8, tuple(segments), tuple(sections), symtab)


def parse_elf(read: Reader) -> ImageHeader:
    """Parse a 64-bit little-endian ELF header, program and section headers."""
    (ident, _type, _machine, _version, _entry, phoff, shoff, _flags, _ehsize, phentsize, phnum,
     shentsize, shnum, shstrndx) = _unpack(_ELF_HEADER, read, 0)
    if ident[:4] != ELF_MAGIC:
        raise ModuleUnreadable("Bad ELF magic")
    if ident[4] != ELFCLASS64 or ident[5] != ELFDATA2LSB:
        raise ModuleUnreadable("Only 64-bit little-endian ELF images are supported")
    if phnum and phentsize < _PROGRAM_HEADER.size:
        raise ModuleUnreadable(f"Bad program header size {phentsize}")
    if shnum and shentsize < _SECTION_HEADER.size:
        raise ModuleUnreadable(f"Bad section header size {shentsize}")

    segments: list[Segment] = []
    for index in range(phnum):
        p_type, _, p_offset, p_vaddr, _, p_filesz, p_memsz, _ = _unpack(
            _PROGRAM_HEADER, read, phoff + index * phentsize
        )
        if p_type == PT_LOAD:
            segments.append(Segment(f"LOAD{len(segments)}", p_vaddr, p_memsz, p_offset, p_filesz))

    headers = [
        _unpack(_SECTION_HEADER, read, shoff + index * shentsize) for index in range(shnum)
    ]
    names = b""
    if 0 < shstrndx < len(headers):
        strtab = headers[shstrndx]
        names = read(strtab[4], strtab[5])

    sections: list[Section] = []
    for sh_name, sh_type, _, sh_addr, sh_offset, sh_size, sh_link, _, _, sh_entsize in headers:
        name = _cstr(names[sh_name:]) if sh_name < len(names) else ""
        sections.append(
            Section("", name, sh_addr, sh_size, sh_offset, sh_type, sh_link, sh_entsize)
        )

    return ImageHeader(ImageFormat.ELF, 8, tuple(segments), tuple(sections))


def parse_header(read: Reader) -> ImageHeader:
    """Parse whichever supported header *read* starts with."""
    if image_format(read(0, 4)) == ImageFormat.ELF:
        return parse_elf(read)
    return parse_macho(read)


def iter_macho_symbols(read: Reader, symtab: SymbolTable) -> Iterator[RawSymbol]:
    """Yield external symbols defined in a section, reading through *read* (file offsets)."""
    strings = read(symtab.stroff, symtab.strsize)
    table = read(symtab.symoff, symtab.nsyms * _NLIST.size)
    for n_strx, n_type, _n_sect, _n_desc, n_value in _NLIST.iter_unpack(
        table[: len(table) - len(table) % _NLIST.size]
    ):
        if n_type & N_STAB or not n_type & N_EXT or n_type & N_TYPE != N_SECT:
            continue
        if n_strx >= len(strings):
            continue
        yield RawSymbol(strings[n_strx:].split(b"\x00", 1)[0], n_value)


def iter_elf_symbols(read: Reader, header: ImageHeader) -> Iterator[RawSymbol]:
    """Yield global and weak defined symbols from ``.dynsym`` and ``.symtab``."""
    seen: set[tuple[bytes, int]] = set()
    for section in header.sections:
        if section.type not in (SHT_SYMTAB, SHT_DYNSYM):
            continue
        if section.link >= len(header.sections):
            continue
        strtab = header.sections[section.link]
        strings = read(strtab.offset, strtab.size)
        entsize = section.entsize or _ELF_SYMBOL.size
        if entsize < _ELF_SYMBOL.size:
            continue
        table = read(section.offset, section.size)
        for start in range(0, len(table) - _ELF_SYMBOL.size + 1, entsize):
            st_name, st_info, _, st_shndx, st_value, _ = _ELF_SYMBOL.unpack_from(table, start)
            if st_info >> 4 not in (STB_GLOBAL, STB_WEAK) or st_shndx == SHN_UNDEF:
                continue
            if st_name >= len(strings):
                continue
            symbol = RawSymbol(strings[st_name:].split(b"\x00", 1)[0], st_value)
            if (symbol.name, symbol.value) in seen:
                continue
            seen.add((symbol.name, symbol.value))
            yield symbol


class FileReader:
    """Random-access reads over a file on disk, usable as a ``Reader``."""

    def __init__(self, path: str) -> None:
        self.path = path
        try:
            self._file = open(path, "rb")
        except OSError as exc:
            raise ModuleUnreadable(f"Cannot open {path}: {exc}") from exc

    def __call__(self, offset: int, length: int) -> bytes:
        try:
            self._file.seek(offset)
            return self._file.read(length)
        except (OSError, ValueError) as exc:
            raise ModuleUnreadable(f"Cannot read {self.path} at {offset:#x}: {exc}") from exc

    def close(self) -> None:
        self._file.close()

    def __enter__(self) -> "FileReader":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
