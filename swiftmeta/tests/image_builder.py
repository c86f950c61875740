"""Builds small Mach-O and ELF images carrying hand-laid Swift metadata.

Records are appended to one flat blob, so every relative offset is known when
it is written: targets are always placed before the records that refer to
them. The blob is mapped as a single segment at ``base``.
"""

import struct
from dataclasses import dataclass

from swiftmeta.images import MemoryModule

MACHO_BASE = 0x100000000
ELF_BASE = 0x400000
HEADER_RESERVE = 0x400

KIND_MODULE = 0
KIND_EXTENSION = 1
KIND_ANONYMOUS = 2
KIND_PROTOCOL = 3
KIND_CLASS = 16
KIND_STRUCT = 17
KIND_ENUM = 18


@dataclass(frozen=True)
class Ref:
    """A relative reference to an offset in the blob; None encodes zero."""

    target: int | None
    low_bits: int = 0

    def encode(self, field_offset: int) -> int:
        if self.target is None:
            return 0
        return self.target - field_offset + self.low_bits


NULL = Ref(None)


class ImageBuilder:
    def __init__(self, name: str = "App", fmt: str = "macho", base: int | None = None) -> None:
        self.name = name
        self.fmt = fmt
        self.base = base if base is not None else (MACHO_BASE if fmt == "macho" else ELF_BASE)
        self.data = bytearray(HEADER_RESERVE)
        self.types: list[int | None] = []
        self.protocols: list[int | None] = []
        self.conformances: list[int | None] = []
        self.symbols: list[tuple[bytes, int]] = []

    # -- primitives --------------------------------------------------------

    def address(self, offset: int) -> int:
        return self.base + offset

    def _align(self, alignment: int = 4) -> None:
        while len(self.data) % alignment:
            self.data.append(0)

    def blob(self, payload: bytes, alignment: int = 4) -> int:
        self._align(alignment)
        offset = len(self.data)
        self.data.extend(payload)
        return offset

    def cstring(self, text: str | bytes) -> int:
        raw = text.encode() if isinstance(text, str) else text
        return self.blob(raw + b"\x00", alignment=1)

    def symbolic(self, descriptor: int, kind: int = 0x01) -> int:
        """A mangled name made of a single symbolic reference to *descriptor*."""
        offset = len(self.data)
        payload = struct.pack("<i", descriptor - (offset + 1))
        self.data.extend(bytes([kind]) + payload + b"\x00")
        return offset

    def pointer_slot(self, target: int | None) -> int:
        """An absolute pointer (like a GOT entry) to *target*, or null."""
        value = 0 if target is None else self.address(target)
        return self.blob(struct.pack("<Q", value), alignment=8)

    def external_slot(self, address: int) -> int:
        """An absolute pointer to *address*, which may lie in another image."""
        return self.blob(struct.pack("<Q", address), alignment=8)

    def record(self, *fields: int | Ref) -> int:
        self._align()
        start = len(self.data)
        for index, value in enumerate(fields):
            if isinstance(value, Ref):
                self.data.extend(struct.pack("<i", value.encode(start + 4 * index)))
            else:
                self.data.extend(struct.pack("<I", value))
        return start

    def _mangled(self, type_name: bytes | int | None) -> Ref:
        if type_name is None:
            return NULL
        if isinstance(type_name, int):
            return Ref(self.symbolic(type_name))
        return Ref(self.cstring(type_name))

    def field_descriptor(
        self, kind: int, records: list[tuple[str, bytes | int | None, int]]
    ) -> int:
        """A field table; each record is ``(name, mangled type, flags)``."""
        prepared = [(Ref(self.cstring(name)), self._mangled(t), flags) for name, t, flags in records]
        self._align()
        start = len(self.data)
        self.data.extend(struct.pack("<iiHHI", 0, 0, kind, 12, len(prepared)))
        for index, (name_ref, type_ref, flags) in enumerate(prepared):
            record_start = start + 16 + 12 * index
            self.data.extend(
                struct.pack(
                    "<Iii", flags, type_ref.encode(record_start + 4), name_ref.encode(record_start + 8)
                )
            )
        return start

    # -- context descriptors -----------------------------------------------

    def swift_module(self, name: str) -> int:
        return self.record(KIND_MODULE, NULL, Ref(self.cstring(name)))

    def extension(self, parent: int, extended: int) -> int:
        return self.record(KIND_EXTENSION, Ref(parent), Ref(self.symbolic(extended)))

    def retarget_extension(self, extension: int, extended: int) -> None:
        """Point an existing extension at *extended*, which may be built after it."""
        field = extension + 8
        (relative,) = struct.unpack_from("<i", self.data, field)
        name = field + relative
        struct.pack_into("<i", self.data, name + 1, extended - (name + 1))

    def anonymous(self, parent: int) -> int:
        return self.record(KIND_ANONYMOUS, Ref(parent))

    def _fields(self, kind: int, fields: list[tuple[str, bytes | int | None]] | None, var: bool) -> Ref:
        if fields is None:
            return NULL
        flags = 0x2 if var else 0
        return Ref(self.field_descriptor(kind, [(n, t, flags) for n, t in fields]))

    def struct(
        self,
        name: str,
        parent: int | Ref,
        fields: list[tuple[str, bytes | int | None]] | None = None,
        register: bool = True,
    ) -> int:
        name_ref = Ref(self.cstring(name))
        fields_ref = self._fields(0, fields, var=False)
        parent_ref = parent if isinstance(parent, Ref) else Ref(parent)
        offset = self.record(
            KIND_STRUCT, parent_ref, name_ref, NULL, fields_ref, len(fields or []), 2
        )
        if register:
            self.types.append(offset)
        return offset

    def klass(
        self,
        name: str,
        parent: int | Ref,
        fields: list[tuple[str, bytes | int | None]] | None = None,
        superclass: bytes | int | None = None,
        register: bool = True,
    ) -> int:
        name_ref = Ref(self.cstring(name))
        fields_ref = self._fields(1, fields, var=True)
        super_ref = self._mangled(superclass)
        parent_ref = parent if isinstance(parent, Ref) else Ref(parent)
        offset = self.record(
            KIND_CLASS,
            parent_ref,
            name_ref,
            NULL,
            fields_ref,
            super_ref,
            2,
            10,
            0,
            len(fields or []),
            10,
        )
        if register:
            self.types.append(offset)
        return offset

    def enum(
        self,
        name: str,
        parent: int | Ref,
        payload_cases: list[tuple[str, bytes | int]] | None = None,
        empty_cases: list[str] | None = None,
        register: bool = True,
    ) -> int:
        payload_cases = payload_cases or []
        empty_cases = empty_cases or []
        records = [(n, t, 0) for n, t in payload_cases] + [(n, None, 0) for n in empty_cases]
        name_ref = Ref(self.cstring(name))
        fields_ref = Ref(self.field_descriptor(2, records))
        offset = self.record(
            KIND_ENUM,
            Ref(parent),
            name_ref,
            NULL,
            fields_ref,
            len(payload_cases),
            len(empty_cases),
        )
        if register:
            self.types.append(offset)
        return offset

    def protocol(
        self,
        name: str,
        parent: int,
        requirements: list[int] | None = None,
        associated_types: list[str] | None = None,
        register: bool = True,
    ) -> int:
        requirements = requirements or []
        name_ref = Ref(self.cstring(name))
        assoc_ref = Ref(self.cstring(" ".join(associated_types))) if associated_types else NULL
        trailing: list[int | Ref] = []
        for flags in requirements:
            trailing.extend([flags, NULL])
        offset = self.record(
            KIND_PROTOCOL, Ref(parent), name_ref, 0, len(requirements), assoc_ref, *trailing
        )
        if register:
            self.protocols.append(offset)
        return offset

    def raw_descriptor(self, flags: int, words: int = 10, register: bool = True) -> int:
        """A descriptor with arbitrary flags followed by zero words."""
        offset = self.record(flags, NULL, *([0] * words))
        if register:
            self.types.append(offset)
        return offset

    # -- conformances and symbols ------------------------------------------

    def conformance(
        self,
        protocol: int | Ref,
        conforming: int | Ref | None,
        type_reference_kind: int = 0,
    ) -> int:
        protocol_ref = protocol if isinstance(protocol, Ref) else Ref(protocol)
        if isinstance(conforming, Ref):
            type_ref = conforming
        else:
            type_ref = Ref(conforming)
        offset = self.record(protocol_ref, type_ref, NULL, type_reference_kind << 3)
        self.conformances.append(offset)
        return offset

    def objc_conformance(self, protocol: int, class_name: str) -> int:
        return self.conformance(protocol, Ref(self.cstring(class_name)), type_reference_kind=2)

    def symbol(self, name: bytes, offset: int) -> None:
        self.symbols.append((name, offset))

    # -- output ------------------------------------------------------------

    def _entries(self, targets: list[int | None]) -> int | None:
        if not targets:
            return None
        self._align()
        start = len(self.data)
        for index, target in enumerate(targets):
            self.data.extend(struct.pack("<i", Ref(target).encode(start + 4 * index)))
        return start

    def _sections(self) -> list[tuple[str, int, int]]:
        names = {
            "macho": ("__swift5_types", "__swift5_protos", "__swift5_proto"),
            "elf": ("swift5_type_metadata", "swift5_protocols", "swift5_protocol_conformances"),
        }[self.fmt]
        result = []
        for name, targets in zip(names, (self.types, self.protocols, self.conformances)):
            start = self._entries(targets)
            if start is not None:
                result.append((name, start, 4 * len(targets)))
        return result

    def build(self) -> bytes:
        """Lay out the sections and headers; the builder can keep growing afterwards."""
        mark = len(self.data)
        try:
            if self.fmt == "macho":
                return self._build_macho()
            return self._build_elf()
        finally:
            del self.data[mark:]

    def build_module(self) -> MemoryModule:
        assert self.fmt == "macho", "ELF modules need a backing file"
        return MemoryModule(self.name, self.base, self.build())

    def write(self, path) -> str:
        with open(path, "wb") as f:
            f.write(self.build())
        return str(path)

    def _build_macho(self) -> bytes:
        sections = self._sections()

        commands = bytearray()
        ncmds = 1
        symtab = b""
        if self.symbols:
            strings = bytearray(b"\x00")
            nlists = bytearray()
            for name, offset in self.symbols:
                nlists.extend(struct.pack("<IBBHQ", len(strings), 0x0F, 1, 0, self.address(offset)))
                strings.extend(name + b"\x00")
            symoff = self.blob(bytes(nlists), alignment=8)
            stroff = self.blob(bytes(strings), alignment=1)
            symtab = struct.pack("<IIIIII", 0x2, 24, symoff, len(self.symbols), stroff, len(strings))
            ncmds += 1

        size = len(self.data)
        commands.extend(
            struct.pack(
                "<II16sQQQQiiII",
                0x19,
                72 + 80 * len(sections),
                b"__TEXT",
                self.base,
                size,
                0,
                size,
                5,
                5,
                len(sections),
                0,
            )
        )
        for name, start, length in sections:
            commands.extend(
                struct.pack(
                    "<16s16sQQIIIIIIII",
                    name.encode(),
                    b"__TEXT",
                    self.address(start),
                    length,
                    start,
                    2,
                    0,
                    0,
                    0,
                    0,
                    0,
                    0,
                )
            )
        commands.extend(symtab)

        header = struct.pack("<IiiIIIII", 0xFEEDFACF, 0x0100000C, 0, 6, ncmds, len(commands), 0, 0)
        image = bytearray(self.data)
        image[: len(header) + len(commands)] = header + commands
        assert len(header) + len(commands) <= HEADER_RESERVE
        return bytes(image)

    def _build_elf(self) -> bytes:
        sections = self._sections()
        shstrtab = bytearray(b"\x00")
        headers: list[tuple] = [(0, 0, 0, 0, 0, 0, 0, 0, 0, 0)]

        def name_index(name: str) -> int:
            index = len(shstrtab)
            shstrtab.extend(name.encode() + b"\x00")
            return index

        for name, start, length in sections:
            headers.append((name_index(name), 1, 2, self.address(start), start, length, 0, 0, 4, 0))

        if self.symbols:
            dynstr = bytearray(b"\x00")
            dynsym = bytearray(bytes(24))
            for name, offset in self.symbols:
                dynsym.extend(struct.pack("<IBBHQQ", len(dynstr), 0x12, 0, 1, self.address(offset), 0))
                dynstr.extend(name + b"\x00")
            dynstr_off = self.blob(bytes(dynstr), alignment=1)
            dynsym_off = self.blob(bytes(dynsym), alignment=8)
            dynstr_index = len(headers) + 1
            headers.append(
                (name_index(".dynsym"), 11, 2, self.address(dynsym_off), dynsym_off, len(dynsym),
                 dynstr_index, 1, 8, 24)
            )
            headers.append(
                (name_index(".dynstr"), 3, 2, self.address(dynstr_off), dynstr_off, len(dynstr),
                 0, 0, 1, 0)
            )

        shstrndx = len(headers)
        shstrtab_name = name_index(".shstrtab")
        shstrtab_off = self.blob(bytes(shstrtab), alignment=1)
        headers.append((shstrtab_name, 3, 0, 0, shstrtab_off, len(shstrtab), 0, 0, 1, 0))

        shoff = self.blob(b"".join(struct.pack("<IIQQQQIIQQ", *h) for h in headers), alignment=8)
        size = len(self.data)

        ident = b"\x7fELF" + bytes([2, 1, 1, 0]) + bytes(8)
        header = struct.pack(
            "<16sHHIQQQIHHHHHH", ident, 3, 62, 1, 0, 64, shoff, 0, 64, 56, 1, 64, len(headers), shstrndx
        )
        program = struct.pack("<IIQQQQQQ", 1, 5, 0, self.base, self.base, size, size, 0x1000)
        image = bytearray(self.data)
        image[: len(header) + len(program)] = header + program
        return bytes(image)
