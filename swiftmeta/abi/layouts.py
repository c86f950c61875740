"""Swift 5 metadata record layouts and flag bitfields.

All records are little endian and made of 32-bit words, except the
field descriptor header which packs two 16-bit values. Fields marked
``relative`` hold a signed offset from the field's own address.
"""

import struct
from dataclasses import dataclass
from enum import IntEnum


class ContextDescriptorKind(IntEnum):
    """Kind tag stored in the low five bits of a context descriptor's flags."""

    MODULE = 0
    EXTENSION = 1
    ANONYMOUS = 2
    PROTOCOL = 3
    OPAQUE_TYPE = 4
    CLASS = 16
    STRUCT = 17
    ENUM = 18


class TypeReferenceKind(IntEnum):
    """How a conformance descriptor refers to its conforming type."""

    DIRECT_TYPE_DESCRIPTOR = 0
    INDIRECT_TYPE_DESCRIPTOR = 1
    DIRECT_OBJC_CLASS_NAME = 2
    INDIRECT_OBJC_CLASS = 3


class ProtocolRequirementKind(IntEnum):
    BASE_PROTOCOL = 0
    METHOD = 1
    INIT = 2
    GETTER = 3
    SETTER = 4
    READ_COROUTINE = 5
    MODIFY_COROUTINE = 6
    ASSOCIATED_TYPE_ACCESS_FUNCTION = 7
    ASSOCIATED_CONFORMANCE_ACCESS_FUNCTION = 8


class FieldDescriptorKind(IntEnum):
    STRUCT = 0
    CLASS = 1
    ENUM = 2
    MULTI_PAYLOAD_ENUM = 3
    PROTOCOL = 4
    CLASS_PROTOCOL = 5
    OBJC_PROTOCOL = 6
    OBJC_CLASS = 7


@dataclass(frozen=True, slots=True)
class LayoutField:
    """One field of a record layout."""

    name: str
    format: str
    relative: bool = False


class RecordLayout:
    """A fixed-size record described by its fields, in declaration order."""

    def __init__(self, name: str, fields: tuple[LayoutField, ...]) -> None:
        self.name = name
        self.fields = fields
        self.struct = struct.Struct("<" + "".join(f.format for f in fields))
        self._offsets: dict[str, int] = {}
        offset = 0
        for f in fields:
            self._offsets[f.name] = offset
            offset += struct.calcsize("<" + f.format)

    @property
    def size(self) -> int:
        return self.struct.size

    def offset_of(self, field: str) -> int:
        return self._offsets[field]

    def unpack(self, data: bytes) -> dict[str, int]:
        return dict(zip((f.name for f in self.fields), self.struct.unpack(data), strict=True))

    def extend(self, name: str, *fields: LayoutField) -> "RecordLayout":
        return RecordLayout(name, self.fields + fields)

    def __repr__(self) -> str:
        return f"RecordLayout({self.name!r}, size={self.size})"


def _u32(name: str) -> LayoutField:
    return LayoutField(name, "I")


def _rel(name: str) -> LayoutField:
    return LayoutField(name, "i", relative=True)


CONTEXT_DESCRIPTOR = RecordLayout("ContextDescriptor", (_u32("Flags"), _rel("Parent")))

MODULE_DESCRIPTOR = CONTEXT_DESCRIPTOR.extend("ModuleDescriptor", _rel("Name"))

EXTENSION_DESCRIPTOR = CONTEXT_DESCRIPTOR.extend("ExtensionDescriptor", _rel("ExtendedContext"))

ANONYMOUS_DESCRIPTOR = CONTEXT_DESCRIPTOR.extend("AnonymousDescriptor")

PROTOCOL_DESCRIPTOR = CONTEXT_DESCRIPTOR.extend(
    "ProtocolDescriptor",
    _rel("Name"),
    _u32("NumRequirementsInSignature"),
    _u32("NumRequirements"),
    _rel("AssociatedTypeNames"),
)

TYPE_DESCRIPTOR = CONTEXT_DESCRIPTOR.extend(
    "TypeDescriptor", _rel("Name"), _rel("AccessFunction"), _rel("Fields")
)

STRUCT_DESCRIPTOR = TYPE_DESCRIPTOR.extend(
    "StructDescriptor", _u32("NumFields"), _u32("FieldOffsetVectorOffset")
)

ENUM_DESCRIPTOR = TYPE_DESCRIPTOR.extend(
    "EnumDescriptor", _u32("NumPayloadCasesAndPayloadSizeOffset"), _u32("NumEmptyCases")
)

CLASS_DESCRIPTOR = TYPE_DESCRIPTOR.extend(
    "ClassDescriptor",
    _rel("SuperclassType"),
    _u32("MetadataNegativeSizeInWords"),
    _u32("MetadataPositiveSizeInWords"),
    _u32("NumImmediateMembers"),
    _u32("NumFields"),
    _u32("FieldOffsetVectorOffset"),
)

FIELD_DESCRIPTOR = RecordLayout(
    "FieldDescriptor",
    (
        _rel("MangledTypeName"),
        _rel("Superclass"),
        LayoutField("Kind", "H"),
        LayoutField("FieldRecordSize", "H"),
        _u32("NumFields"),
    ),
)

FIELD_RECORD = RecordLayout(
    "FieldRecord", (_u32("Flags"), _rel("MangledTypeName"), _rel("FieldName"))
)

GENERIC_REQUIREMENT = RecordLayout(
    "GenericRequirementDescriptor", (_u32("Flags"), _rel("Param"), _rel("Type"))
)

PROTOCOL_REQUIREMENT = RecordLayout(
    "ProtocolRequirement", (_u32("Flags"), _rel("DefaultImplementation"))
)

CONFORMANCE_DESCRIPTOR = RecordLayout(
    "ProtocolConformanceDescriptor",
    (_rel("Protocol"), _rel("TypeRef"), _rel("WitnessTablePattern"), _u32("Flags")),
)

# Entries of the types, protocols and conformances sections.
SECTION_ENTRY_SIZE = 4


@dataclass(frozen=True, slots=True)
class ContextDescriptorFlags:
    """Common header flags of every context descriptor."""

    value: int

    @property
    def kind_value(self) -> int:
        return self.value & 0x1F

    @property
    def kind(self) -> ContextDescriptorKind | None:
        try:
            return ContextDescriptorKind(self.kind_value)
        except ValueError:
            return None

    @property
    def is_unique(self) -> bool:
        return bool(self.value & 0x40)

    @property
    def is_generic(self) -> bool:
        return bool(self.value & 0x80)

    @property
    def version(self) -> int:
        return (self.value >> 8) & 0xFF

    @property
    def kind_specific(self) -> int:
        return (self.value >> 16) & 0xFFFF

    # Type context kind-specific bits
    @property
    def metadata_initialization(self) -> int:
        return self.kind_specific & 0x3

    @property
    def has_import_info(self) -> bool:
        return bool(self.kind_specific & 0x4)

    # Class kind-specific bits
    @property
    def class_has_vtable(self) -> bool:
        return bool(self.kind_specific & 0x8000)

    @property
    def class_has_override_table(self) -> bool:
        return bool(self.kind_specific & 0x4000)

    @property
    def class_has_resilient_superclass(self) -> bool:
        return bool(self.kind_specific & 0x2000)


@dataclass(frozen=True, slots=True)
class ConformanceFlags:
    """Flags word of a protocol conformance descriptor."""

    value: int

    @property
    def type_reference_kind(self) -> TypeReferenceKind | None:
        try:
            return TypeReferenceKind((self.value >> 3) & 0x7)
        except ValueError:
            return None

    @property
    def is_retroactive(self) -> bool:
        return bool(self.value & 0x40)

    @property
    def is_synthesized_non_unique(self) -> bool:
        return bool(self.value & 0x80)

    @property
    def num_conditional_requirements(self) -> int:
        return (self.value >> 8) & 0xFF

    @property
    def has_resilient_witnesses(self) -> bool:
        return bool(self.value & 0x10000)

    @property
    def has_generic_witness_table(self) -> bool:
        return bool(self.value & 0x20000)


@dataclass(frozen=True, slots=True)
class ProtocolRequirementFlags:
    value: int

    @property
    def kind(self) -> ProtocolRequirementKind | None:
        try:
            return ProtocolRequirementKind(self.value & 0xF)
        except ValueError:
            return None

    @property
    def is_instance(self) -> bool:
        return bool(self.value & 0x10)


@dataclass(frozen=True, slots=True)
class FieldRecordFlags:
    value: int

    @property
    def is_indirect_case(self) -> bool:
        return bool(self.value & 0x1)

    @property
    def is_var(self) -> bool:
        return bool(self.value & 0x2)
