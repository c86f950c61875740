"""Decode Swift context descriptors.

A descriptor is decoded from its fixed-size record only. Everything reached
through a relative pointer (names, parents, field tables, requirements) is
held in a :class:`Lazy` and read from the module on first access, so walking
a section costs one small read per descriptor.
"""

import logging
import struct
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import ClassVar, Generic, TypeVar

from .abi.layouts import (
    ANONYMOUS_DESCRIPTOR,
    CLASS_DESCRIPTOR,
    CONTEXT_DESCRIPTOR,
    ENUM_DESCRIPTOR,
    EXTENSION_DESCRIPTOR,
    FIELD_DESCRIPTOR,
    FIELD_RECORD,
    GENERIC_REQUIREMENT,
    MODULE_DESCRIPTOR,
    PROTOCOL_DESCRIPTOR,
    PROTOCOL_REQUIREMENT,
    SECTION_ENTRY_SIZE,
    STRUCT_DESCRIPTOR,
    ContextDescriptorFlags,
    ContextDescriptorKind,
    FieldDescriptorKind,
    FieldRecordFlags,
    ProtocolRequirementFlags,
    ProtocolRequirementKind,
    RecordLayout,
)
from .abi.reader import (
    MAX_STRING_LENGTH,
    read_cstring,
    read_pointer,
    read_record,
    resolve_field,
    resolve_indirectable,
)
from .host import Module, ModuleUnreadable
from .sections import SectionRange

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_CONTEXT_DEPTH = 64
MAX_TRAILING_RECORDS = 0x10000

# Symbolic reference control bytes inside mangled names.
SYMBOLIC_DIRECT_CONTEXT = 0x01
SYMBOLIC_INDIRECT_CONTEXT = 0x02


class MalformedDescriptor(RuntimeError):
    """Raised when a descriptor has an unknown kind or truncated data."""


_PENDING: object = object()


class Lazy(Generic[T]):
    """A deferred value: computed on first ``get()``, then cached.

    A computation that raises is not cached and runs again on the next call.
    """

    __slots__ = ("_compute", "_value")

    def __init__(self, compute: Callable[[], T]) -> None:
        self._compute = compute
        self._value: object = _PENDING

    @classmethod
    def of(cls, value: T) -> "Lazy[T]":
        lazy: Lazy[T] = cls(lambda: value)
        lazy._value = value
        return lazy

    @property
    def resolved(self) -> bool:
        return self._value is not _PENDING

    def get(self) -> T:
        if self._value is _PENDING:
            self._value = self._compute()
        return self._value  # type: ignore[return-value]

    def __repr__(self) -> str:
        return f"Lazy({self._value!r})" if self.resolved else "Lazy(<pending>)"


@contextmanager
def _decoding(what: str, address: int) -> Iterator[None]:
    try:
        yield
    except (ModuleUnreadable, struct.error) as exc:
        raise MalformedDescriptor(f"Truncated {what} at {address:#x}: {exc}") from exc


@dataclass(frozen=True, slots=True)
class SymbolicReference:
    """A symbolic reference embedded in a mangled name."""

    kind: int
    address: int | None
    descriptor_address: int | None = None


@dataclass(frozen=True, slots=True)
class MangledTypeName:
    """A mangled type name as stored in metadata.

    ``raw`` keeps the reference payloads; ``text`` replaces each reference to
    a context descriptor with that descriptor's fully qualified name, or with
    its address when read without resolving names.
    """

    raw: bytes
    references: tuple[SymbolicReference, ...]
    text: str

    @property
    def is_single_reference(self) -> bool:
        return len(self.references) == 1 and self.raw[:1] == bytes([self.references[0].kind]) and (
            len(self.raw) in (5, 9)
        )

    def __str__(self) -> str:
        return self.text


def _symbolic_text(module: Module, reference: SymbolicReference) -> str:
    if reference.descriptor_address is not None:
        try:
            return decode_descriptor(module, reference.descriptor_address).full_name
        except MalformedDescriptor:
            pass
    return _address_text(reference)


def _address_text(reference: SymbolicReference) -> str:
    if reference.address is None:
        return "<symbolic>"
    return f"<symbolic {reference.address:#x}>"


def read_mangled_name(module: Module, address: int, resolve_names: bool = True) -> MangledTypeName:
    """Read a mangled name, decoding symbolic references along the way.

    With *resolve_names* false, references are not looked up and render as
    their target address.
    """
    raw = bytearray()
    references: list[SymbolicReference] = []
    parts: list[str] = []
    cursor = address
    with _decoding("mangled name", address):
        while len(raw) < MAX_STRING_LENGTH:
            byte = module.read_bytes(cursor, 1)[0]
            if byte == 0:
                break
            if 0x01 <= byte <= 0x17:
                payload = module.read_bytes(cursor + 1, 4)
                target = cursor + 1 + int.from_bytes(payload, "little", signed=True)
                descriptor_address = None
                if byte == SYMBOLIC_DIRECT_CONTEXT:
                    descriptor_address = target
                elif byte == SYMBOLIC_INDIRECT_CONTEXT:
                    descriptor_address = read_pointer(module, target) or None
                reference = SymbolicReference(byte, target, descriptor_address)
                cursor += 5
            elif 0x18 <= byte <= 0x1F:
                payload = module.read_bytes(cursor + 1, module.pointer_size)
                reference = SymbolicReference(byte, int.from_bytes(payload, "little") or None)
                cursor += 1 + module.pointer_size
            else:
                raw.append(byte)
                parts.append(chr(byte))
                cursor += 1
                continue
            raw.append(byte)
            raw.extend(payload)
            references.append(reference)
            if resolve_names:
                parts.append(_symbolic_text(module, reference))
            else:
                parts.append(_address_text(reference))
    return MangledTypeName(bytes(raw), tuple(references), "".join(parts))


@dataclass(frozen=True, slots=True)
class FieldRecord:
    """A stored property of a class or struct, or a case of an enum."""

    name: str
    flags: FieldRecordFlags
    type_name: MangledTypeName | None

    @property
    def is_var(self) -> bool:
        return self.flags.is_var

    @property
    def is_indirect_case(self) -> bool:
        return self.flags.is_indirect_case


@dataclass(frozen=True, slots=True)
class FieldDescriptor:
    """The reflection field table of a nominal type."""

    address: int
    kind: FieldDescriptorKind | int
    type_name: MangledTypeName | None
    superclass: MangledTypeName | None
    records: tuple[FieldRecord, ...]


@dataclass(frozen=True, slots=True)
class ProtocolRequirement:
    flags: ProtocolRequirementFlags
    default_implementation: int | None

    @property
    def kind(self) -> ProtocolRequirementKind | None:
        return self.flags.kind


def _optional_mangled_name(
    module: Module, address: int | None, resolve_names: bool = True
) -> MangledTypeName | None:
    return None if address is None else read_mangled_name(module, address, resolve_names)


def decode_field_descriptor(module: Module, address: int) -> FieldDescriptor:
    """Decode a field descriptor and all of its field records."""
    with _decoding("field descriptor", address):
        header = read_record(module, address, FIELD_DESCRIPTOR)
        count = header["NumFields"]
        record_size = header["FieldRecordSize"]
        if count > MAX_TRAILING_RECORDS:
            raise MalformedDescriptor(f"Field descriptor at {address:#x} claims {count} fields")
        if count and record_size < FIELD_RECORD.size:
            raise MalformedDescriptor(f"Field record size {record_size} at {address:#x}")

        records: list[FieldRecord] = []
        cursor = address + FIELD_DESCRIPTOR.size
        for _ in range(count):
            raw = read_record(module, cursor, FIELD_RECORD)
            name_address = resolve_field(cursor, FIELD_RECORD, "FieldName", raw["FieldName"])
            type_address = resolve_field(
                cursor, FIELD_RECORD, "MangledTypeName", raw["MangledTypeName"]
            )
            records.append(
                FieldRecord(
                    name=read_cstring(module, name_address) if name_address is not None else "",
                    flags=FieldRecordFlags(raw["Flags"]),
                    type_name=_optional_mangled_name(module, type_address),
                )
            )
            cursor += record_size

        try:
            kind: FieldDescriptorKind | int = FieldDescriptorKind(header["Kind"])
        except ValueError:
            kind = header["Kind"]

        return FieldDescriptor(
            address=address,
            kind=kind,
            type_name=_optional_mangled_name(
                module,
                resolve_field(address, FIELD_DESCRIPTOR, "MangledTypeName", header["MangledTypeName"]),
            ),
            superclass=_optional_mangled_name(
                module, resolve_field(address, FIELD_DESCRIPTOR, "Superclass", header["Superclass"])
            ),
            records=tuple(records),
        )


# -- lazy field builders -------------------------------------------------


def _parent_ref(module: Module, address: int, record: dict[str, int]) -> Lazy["ContextDescriptor | None"]:
    field_address = address + CONTEXT_DESCRIPTOR.offset_of("Parent")
    offset = record["Parent"]

    def compute() -> ContextDescriptor | None:
        with _decoding("parent reference", field_address):
            target = resolve_indirectable(module, field_address, offset)
        return None if target is None else decode_descriptor(module, target)

    return Lazy(compute)


def _name_ref(module: Module, address: int, layout: RecordLayout, record: dict[str, int]) -> Lazy[str]:
    target = resolve_field(address, layout, "Name", record["Name"])
    if target is None:
        raise MalformedDescriptor(f"{layout.name} at {address:#x} has no name")

    def compute() -> str:
        with _decoding(f"{layout.name} name", target):
            return read_cstring(module, target)

    return Lazy(compute)


def _address_ref(address: int, layout: RecordLayout, field: str, record: dict[str, int]) -> Lazy[int | None]:
    return Lazy.of(resolve_field(address, layout, field, record[field]))


def _mangled_name_ref(
    module: Module,
    address: int,
    layout: RecordLayout,
    field: str,
    record: dict[str, int],
    resolve_names: bool = True,
) -> Lazy[MangledTypeName | None]:
    target = resolve_field(address, layout, field, record[field])
    return Lazy(lambda: _optional_mangled_name(module, target, resolve_names))


def _fields_ref(
    module: Module, address: int, layout: RecordLayout, record: dict[str, int]
) -> Lazy[FieldDescriptor | None]:
    target = resolve_field(address, layout, "Fields", record["Fields"])
    return Lazy(lambda: None if target is None else decode_field_descriptor(module, target))


# -- descriptors ---------------------------------------------------------


@dataclass(frozen=True, slots=True, eq=False, repr=False)
class ContextDescriptor:
    """Common header of every context descriptor."""

    kind: ClassVar[ContextDescriptorKind]
    layout: ClassVar[RecordLayout]

    module: Module
    address: int
    flags: ContextDescriptorFlags
    parent_ref: Lazy["ContextDescriptor | None"]

    @classmethod
    def from_record(cls, module: Module, address: int, record: dict[str, int]) -> "ContextDescriptor":
        raise NotImplementedError

    @property
    def parent(self) -> "ContextDescriptor | None":
        return self.parent_ref.get()

    @property
    def name(self) -> str | None:
        """Name of this context, or None for contexts that do not name a scope."""
        return None

    def path(self) -> tuple[str, ...]:
        """Name components from the module down to this context."""
        return self._path(0)

    def _path(self, depth: int) -> tuple[str, ...]:
        components: list[str] = []
        context: ContextDescriptor | None = self
        while context is not None:
            depth += 1
            if depth > MAX_CONTEXT_DEPTH:
                raise MalformedDescriptor(f"Context nesting too deep at {self.address:#x}")
            if isinstance(context, ModuleDescriptor):
                components.append(context.name)
                return tuple(reversed(components))
            if isinstance(context, ExtensionDescriptor):
                extended = context.extended_descriptor
                if extended is not None:
                    return extended._path(depth) + tuple(reversed(components))
            elif context.name is not None:
                components.append(context.name)
            context = context.parent
        raise MalformedDescriptor(f"Descriptor at {self.address:#x} has no module context")

    @property
    def module_name(self) -> str:
        """Name of the module that declares this context.

        Members of an extension belong to the extension's module, not the
        extended type's, so this follows parents only.
        """
        context: ContextDescriptor | None = self
        for _ in range(MAX_CONTEXT_DEPTH):
            if context is None:
                break
            if isinstance(context, ModuleDescriptor):
                return context.name
            context = context.parent
        else:
            raise MalformedDescriptor(f"Context nesting too deep at {self.address:#x}")
        raise MalformedDescriptor(f"Descriptor at {self.address:#x} has no module context")

    @property
    def full_name(self) -> str:
        """Fully qualified name, including the module: ``App.Outer.Inner``."""
        return ".".join(self.path())

    @property
    def qualified_name(self) -> str:
        """Fully qualified name without the module prefix: ``Outer.Inner``."""
        path = self.path()
        return ".".join(path[1:]) if len(path) > 1 else path[0]

    def __repr__(self) -> str:
        return f"<{type(self).__name__} at {self.address:#x}>"


@dataclass(frozen=True, slots=True, eq=False, repr=False)
class ModuleDescriptor(ContextDescriptor):
    kind: ClassVar[ContextDescriptorKind] = ContextDescriptorKind.MODULE
    layout: ClassVar[RecordLayout] = MODULE_DESCRIPTOR

    name_ref: Lazy[str]

    @classmethod
    def from_record(cls, module: Module, address: int, record: dict[str, int]) -> "ModuleDescriptor":
        return cls(
            module=module,
            address=address,
            flags=ContextDescriptorFlags(record["Flags"]),
            parent_ref=_parent_ref(module, address, record),
            name_ref=_name_ref(module, address, cls.layout, record),
        )

    @property
    def name(self) -> str:
        return self.name_ref.get()


@dataclass(frozen=True, slots=True, eq=False, repr=False)
class ExtensionDescriptor(ContextDescriptor):
    kind: ClassVar[ContextDescriptorKind] = ContextDescriptorKind.EXTENSION
    layout: ClassVar[RecordLayout] = EXTENSION_DESCRIPTOR

    extended_context_ref: Lazy[MangledTypeName | None]

    @classmethod
    def from_record(cls, module: Module, address: int, record: dict[str, int]) -> "ExtensionDescriptor":
        return cls(
            module=module,
            address=address,
            flags=ContextDescriptorFlags(record["Flags"]),
            parent_ref=_parent_ref(module, address, record),
            # Rendering the extended type's name walks its parents, which can
            # lead back through this extension.
            extended_context_ref=_mangled_name_ref(
                module, address, cls.layout, "ExtendedContext", record, resolve_names=False
            ),
        )

    @property
    def extended_context(self) -> MangledTypeName | None:
        return self.extended_context_ref.get()

    @property
    def extended_descriptor(self) -> ContextDescriptor | None:
        """The extended nominal type, when the mangled name is a plain reference to it."""
        try:
            mangled = self.extended_context
            if mangled is None or not mangled.is_single_reference:
                return None
            target = mangled.references[0].descriptor_address
            if target is None:
                return None
            return decode_descriptor(self.module, target)
        except MalformedDescriptor as exc:
            logger.debug("Treating extension at %#x as transparent: %s", self.address, exc)
            return None


@dataclass(frozen=True, slots=True, eq=False, repr=False)
class AnonymousDescriptor(ContextDescriptor):
    kind: ClassVar[ContextDescriptorKind] = ContextDescriptorKind.ANONYMOUS
    layout: ClassVar[RecordLayout] = ANONYMOUS_DESCRIPTOR

    @classmethod
    def from_record(cls, module: Module, address: int, record: dict[str, int]) -> "AnonymousDescriptor":
        return cls(
            module=module,
            address=address,
            flags=ContextDescriptorFlags(record["Flags"]),
            parent_ref=_parent_ref(module, address, record),
        )


@dataclass(frozen=True, slots=True, eq=False, repr=False)
class TypeContextDescriptor(ContextDescriptor):
    """Header shared by class, struct and enum descriptors."""

    name_ref: Lazy[str]
    access_function_ref: Lazy[int | None]
    fields_ref: Lazy[FieldDescriptor | None]

    @property
    def name(self) -> str:
        return self.name_ref.get()

    @property
    def access_function(self) -> int | None:
        return self.access_function_ref.get()

    @property
    def field_descriptor(self) -> FieldDescriptor | None:
        return self.fields_ref.get()

    @property
    def field_records(self) -> tuple[FieldRecord, ...]:
        descriptor = self.field_descriptor
        return descriptor.records if descriptor is not None else ()

    @classmethod
    def _common(cls, module: Module, address: int, record: dict[str, int]) -> dict:
        return {
            "module": module,
            "address": address,
            "flags": ContextDescriptorFlags(record["Flags"]),
            "parent_ref": _parent_ref(module, address, record),
            "name_ref": _name_ref(module, address, cls.layout, record),
            "access_function_ref": _address_ref(address, cls.layout, "AccessFunction", record),
            "fields_ref": _fields_ref(module, address, cls.layout, record),
        }


@dataclass(frozen=True, slots=True, eq=False, repr=False)
class StructDescriptor(TypeContextDescriptor):
    kind: ClassVar[ContextDescriptorKind] = ContextDescriptorKind.STRUCT
    layout: ClassVar[RecordLayout] = STRUCT_DESCRIPTOR

    num_fields: int
    field_offset_vector_offset: int

    @classmethod
    def from_record(cls, module: Module, address: int, record: dict[str, int]) -> "StructDescriptor":
        return cls(
            **cls._common(module, address, record),
            num_fields=record["NumFields"],
            field_offset_vector_offset=record["FieldOffsetVectorOffset"],
        )


@dataclass(frozen=True, slots=True, eq=False, repr=False)
class EnumDescriptor(TypeContextDescriptor):
    kind: ClassVar[ContextDescriptorKind] = ContextDescriptorKind.ENUM
    layout: ClassVar[RecordLayout] = ENUM_DESCRIPTOR

    num_payload_cases_and_payload_size_offset: int
    num_empty_cases: int

    @classmethod
    def from_record(cls, module: Module, address: int, record: dict[str, int]) -> "EnumDescriptor":
        return cls(
            **cls._common(module, address, record),
            num_payload_cases_and_payload_size_offset=record["NumPayloadCasesAndPayloadSizeOffset"],
            num_empty_cases=record["NumEmptyCases"],
        )

    @property
    def num_payload_cases(self) -> int:
        return self.num_payload_cases_and_payload_size_offset & 0x00FFFFFF

    @property
    def payload_size_offset(self) -> int:
        return (self.num_payload_cases_and_payload_size_offset >> 24) & 0xFF

    @property
    def num_cases(self) -> int:
        return self.num_payload_cases + self.num_empty_cases


@dataclass(frozen=True, slots=True, eq=False, repr=False)
class ClassDescriptor(TypeContextDescriptor):
    kind: ClassVar[ContextDescriptorKind] = ContextDescriptorKind.CLASS
    layout: ClassVar[RecordLayout] = CLASS_DESCRIPTOR

    superclass_ref: Lazy[MangledTypeName | None]
    metadata_negative_size_in_words: int
    metadata_positive_size_in_words: int
    num_immediate_members: int
    num_fields: int
    field_offset_vector_offset: int

    @classmethod
    def from_record(cls, module: Module, address: int, record: dict[str, int]) -> "ClassDescriptor":
        return cls(
            **cls._common(module, address, record),
            superclass_ref=_mangled_name_ref(module, address, cls.layout, "SuperclassType", record),
            metadata_negative_size_in_words=record["MetadataNegativeSizeInWords"],
            metadata_positive_size_in_words=record["MetadataPositiveSizeInWords"],
            num_immediate_members=record["NumImmediateMembers"],
            num_fields=record["NumFields"],
            field_offset_vector_offset=record["FieldOffsetVectorOffset"],
        )

    @property
    def superclass(self) -> MangledTypeName | None:
        return self.superclass_ref.get()


@dataclass(frozen=True, slots=True, eq=False, repr=False)
class ProtocolDescriptor(ContextDescriptor):
    kind: ClassVar[ContextDescriptorKind] = ContextDescriptorKind.PROTOCOL
    layout: ClassVar[RecordLayout] = PROTOCOL_DESCRIPTOR

    name_ref: Lazy[str]
    num_requirements_in_signature: int
    num_requirements: int
    associated_type_names_ref: Lazy[tuple[str, ...]]
    requirements_ref: Lazy[tuple[ProtocolRequirement, ...]]

    @classmethod
    def from_record(cls, module: Module, address: int, record: dict[str, int]) -> "ProtocolDescriptor":
        in_signature = record["NumRequirementsInSignature"]
        count = record["NumRequirements"]
        if in_signature > MAX_TRAILING_RECORDS or count > MAX_TRAILING_RECORDS:
            raise MalformedDescriptor(f"Protocol at {address:#x} claims too many requirements")

        names_address = resolve_field(
            address, cls.layout, "AssociatedTypeNames", record["AssociatedTypeNames"]
        )

        def associated_type_names() -> tuple[str, ...]:
            if names_address is None:
                return ()
            with _decoding("associated type names", names_address):
                return tuple(read_cstring(module, names_address).split())

        def requirements() -> tuple[ProtocolRequirement, ...]:
            cursor = address + cls.layout.size + in_signature * GENERIC_REQUIREMENT.size
            result: list[ProtocolRequirement] = []
            with _decoding("protocol requirements", cursor):
                for _ in range(count):
                    raw = read_record(module, cursor, PROTOCOL_REQUIREMENT)
                    result.append(
                        ProtocolRequirement(
                            flags=ProtocolRequirementFlags(raw["Flags"]),
                            default_implementation=resolve_field(
                                cursor,
                                PROTOCOL_REQUIREMENT,
                                "DefaultImplementation",
                                raw["DefaultImplementation"],
                            ),
                        )
                    )
                    cursor += PROTOCOL_REQUIREMENT.size
            return tuple(result)

        return cls(
            module=module,
            address=address,
            flags=ContextDescriptorFlags(record["Flags"]),
            parent_ref=_parent_ref(module, address, record),
            name_ref=_name_ref(module, address, cls.layout, record),
            num_requirements_in_signature=in_signature,
            num_requirements=count,
            associated_type_names_ref=Lazy(associated_type_names),
            requirements_ref=Lazy(requirements),
        )

    @property
    def name(self) -> str:
        return self.name_ref.get()

    @property
    def associated_type_names(self) -> tuple[str, ...]:
        return self.associated_type_names_ref.get()

    @property
    def requirements(self) -> tuple[ProtocolRequirement, ...]:
        return self.requirements_ref.get()


_DESCRIPTOR_TYPES: dict[ContextDescriptorKind, type[ContextDescriptor]] = {
    cls.kind: cls
    for cls in (
        ModuleDescriptor,
        ExtensionDescriptor,
        AnonymousDescriptor,
        ProtocolDescriptor,
        ClassDescriptor,
        StructDescriptor,
        EnumDescriptor,
    )
}


def decode_descriptor(module: Module, address: int) -> ContextDescriptor:
    """Decode the context descriptor at *address*.

    Dispatches on the kind tag in the flags word and reads the matching
    fixed-size layout. Raises MalformedDescriptor for unknown kinds,
    unsupported kinds, and records that run past mapped memory.
    """
    with _decoding("context descriptor", address):
        header = read_record(module, address, CONTEXT_DESCRIPTOR)
    flags = ContextDescriptorFlags(header["Flags"])
    descriptor_type = _DESCRIPTOR_TYPES.get(flags.kind)  # type: ignore[arg-type]
    if descriptor_type is None:
        raise MalformedDescriptor(
            f"Unrecognized context descriptor kind {flags.kind_value} at {address:#x}"
        )
    with _decoding(descriptor_type.layout.name, address):
        record = read_record(module, address, descriptor_type.layout)
    return descriptor_type.from_record(module, address, record)


def _section_entries(module: Module, section: SectionRange) -> Iterator[tuple[int, int]]:
    data = module.read_bytes(section.address, section.size)
    usable = len(data) - len(data) % SECTION_ENTRY_SIZE
    for index, (value,) in enumerate(struct.iter_unpack("<i", data[:usable])):
        yield section.address + index * SECTION_ENTRY_SIZE, value


def _type_record_target(module: Module, record_address: int, value: int) -> int | None:
    offset = value & ~0x3
    if offset == 0:
        return None
    target = record_address + offset
    reference_kind = value & 0x3
    if reference_kind == 0:
        return target
    if reference_kind == 1:
        with _decoding("indirect type reference", target):
            return read_pointer(module, target) or None
    raise MalformedDescriptor(f"Unknown type reference kind {reference_kind} at {record_address:#x}")


def iter_type_descriptors(module: Module, section: SectionRange) -> Iterator[TypeContextDescriptor]:
    """Yield the class, struct and enum descriptors listed in a types section.

    Malformed entries are logged and skipped. Raises ModuleUnreadable if the
    section itself cannot be read.
    """
    for record_address, value in _section_entries(module, section):
        try:
            address = _type_record_target(module, record_address, value)
            if address is None:
                logger.debug("Empty type record at %#x in %s", record_address, module.name)
                continue
            descriptor = decode_descriptor(module, address)
            if not isinstance(descriptor, TypeContextDescriptor):
                raise MalformedDescriptor(
                    f"Expected a type descriptor at {address:#x}, found {descriptor.kind.name}"
                )
        except MalformedDescriptor as exc:
            logger.warning("Skipping type record at %#x in %s: %s", record_address, module.name, exc)
            continue
        yield descriptor


def iter_protocol_descriptors(module: Module, section: SectionRange) -> Iterator[ProtocolDescriptor]:
    """Yield the protocol descriptors listed in a protocols section."""
    for record_address, value in _section_entries(module, section):
        try:
            with _decoding("protocol record", record_address):
                address = resolve_indirectable(module, record_address, value)
            if address is None:
                logger.debug("Empty protocol record at %#x in %s", record_address, module.name)
                continue
            descriptor = decode_descriptor(module, address)
            if not isinstance(descriptor, ProtocolDescriptor):
                raise MalformedDescriptor(
                    f"Expected a protocol descriptor at {address:#x}, found {descriptor.kind.name}"
                )
        except MalformedDescriptor as exc:
            logger.warning(
                "Skipping protocol record at %#x in %s: %s", record_address, module.name, exc
            )
            continue
        yield descriptor
