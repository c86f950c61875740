"""Decode protocol conformance records."""

import logging
import struct
from collections.abc import Iterator
from dataclasses import dataclass, field

from .abi.layouts import CONFORMANCE_DESCRIPTOR, ConformanceFlags, TypeReferenceKind
from .abi.reader import read_cstring, read_pointer, read_record, resolve_field, resolve_indirectable
from .descriptors import MalformedDescriptor, ProtocolDescriptor, decode_descriptor
from .host import Module, ModuleUnreadable
from .sections import SectionRange

logger = logging.getLogger(__name__)


class UnresolvedConformanceTarget(RuntimeError):
    """Raised when a conformance names a type outside the known descriptors."""


@dataclass(frozen=True, slots=True)
class ConformanceRecord:
    """One protocol conformance descriptor.

    ``type_address`` is the conforming type's context descriptor. Conformances
    of Objective-C classes carry ``objc_class_name`` (or nothing, for indirect
    class references) instead.
    """

    module: Module = field(compare=False, repr=False)
    address: int
    protocol_address: int | None
    type_address: int | None
    flags: ConformanceFlags
    objc_class_name: str | None = None

    @property
    def type_reference_kind(self) -> TypeReferenceKind | None:
        return self.flags.type_reference_kind

    def protocol_descriptor(self) -> ProtocolDescriptor:
        """Decode the protocol this record conforms to, through the record's module."""
        if self.protocol_address is None:
            raise MalformedDescriptor(f"Conformance at {self.address:#x} has no protocol")
        descriptor = decode_descriptor(self.module, self.protocol_address)
        if not isinstance(descriptor, ProtocolDescriptor):
            raise MalformedDescriptor(
                f"Conformance at {self.address:#x} points at a {descriptor.kind.name} descriptor"
            )
        return descriptor


@dataclass(frozen=True, slots=True)
class Conformance:
    """A conformance attached to a type, with its protocol's names resolved."""

    protocol_name: str
    protocol_full_name: str
    record: ConformanceRecord


def decode_conformance(module: Module, address: int) -> ConformanceRecord:
    """Decode the conformance descriptor at *address*."""
    raw = read_record(module, address, CONFORMANCE_DESCRIPTOR)
    flags = ConformanceFlags(raw["Flags"])

    protocol_field = address + CONFORMANCE_DESCRIPTOR.offset_of("Protocol")
    protocol_address = resolve_indirectable(module, protocol_field, raw["Protocol"])

    type_ref = resolve_field(address, CONFORMANCE_DESCRIPTOR, "TypeRef", raw["TypeRef"])
    type_address: int | None = None
    objc_class_name: str | None = None
    kind = flags.type_reference_kind
    if type_ref is not None:
        if kind == TypeReferenceKind.DIRECT_TYPE_DESCRIPTOR:
            type_address = type_ref
        elif kind == TypeReferenceKind.INDIRECT_TYPE_DESCRIPTOR:
            type_address = read_pointer(module, type_ref) or None
        elif kind == TypeReferenceKind.DIRECT_OBJC_CLASS_NAME:
            objc_class_name = read_cstring(module, type_ref)
        elif kind is None:
            raise MalformedDescriptor(
                f"Unknown type reference kind {(flags.value >> 3) & 0x7} at {address:#x}"
            )

    return ConformanceRecord(
        module=module,
        address=address,
        protocol_address=protocol_address,
        type_address=type_address,
        flags=flags,
        objc_class_name=objc_class_name,
    )


class ConformanceRecords:
    """The conformance records of one section, decoded lazily.

    Iterating re-reads the section every time; nothing is cached. Records that
    cannot be decoded are logged and skipped.
    """

    def __init__(self, module: Module, section: SectionRange) -> None:
        self.module = module
        self.section = section

    def _entries(self) -> Iterator[tuple[int, int]]:
        data = self.module.read_bytes(self.section.address, self.section.size)
        usable = len(data) - len(data) % 4
        for index, (offset,) in enumerate(struct.iter_unpack("<i", data[:usable])):
            if offset != 0:
                yield self.section.address + index * 4, offset

    def __len__(self) -> int:
        """Number of non-null entries, including ones that fail to decode."""
        return sum(1 for _ in self._entries())

    def __iter__(self) -> Iterator[ConformanceRecord]:
        for entry, offset in self._entries():
            try:
                yield decode_conformance(self.module, entry + offset)
            except (ModuleUnreadable, MalformedDescriptor, struct.error) as exc:
                logger.warning(
                    "Skipping conformance record at %#x in %s: %s", entry, self.module.name, exc
                )

    def __repr__(self) -> str:
        return f"ConformanceRecords({self.module.name!r}, {self.section.address:#x})"


def decode_conformances(module: Module, section: SectionRange) -> ConformanceRecords:
    """Return a restartable, lazy sequence of the conformances in *section*."""
    return ConformanceRecords(module, section)
