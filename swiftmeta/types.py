"""Queryable wrappers over decoded descriptors."""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import ClassVar

from .abi.layouts import ContextDescriptorKind, ProtocolRequirementKind
from .conformances import Conformance
from .descriptors import (
    ClassDescriptor,
    ContextDescriptor,
    EnumDescriptor,
    FieldRecord,
    MalformedDescriptor,
    ProtocolDescriptor,
    StructDescriptor,
    TypeContextDescriptor,
)

# Kind suffixes of nominal types in Swift manglings.
_MANGLING_SUFFIX = {
    ContextDescriptorKind.CLASS: "C",
    ContextDescriptorKind.STRUCT: "V",
    ContextDescriptorKind.ENUM: "O",
    ContextDescriptorKind.PROTOCOL: "P",
}


def _identifier(name: str) -> str:
    return f"{len(name.encode('utf-8'))}{name}"


def mangle_context(descriptor: ContextDescriptor) -> str:
    """Build a substitution-free ``$s`` mangling of a type's context path.

    Each nested type contributes its own kind suffix, e.g. ``$s3App5OuterV5InnerC``.
    Extension and anonymous contexts are not represented.
    """
    chain: list[ContextDescriptor] = []
    context: ContextDescriptor | None = descriptor
    while context is not None and context.kind != ContextDescriptorKind.MODULE:
        if context.kind in _MANGLING_SUFFIX:
            chain.append(context)
        context = context.parent
    parts = ["$s", _identifier(descriptor.module_name)]
    for node in reversed(chain):
        name = node.name
        if name is None:
            raise MalformedDescriptor(f"Unnamed type context at {node.address:#x}")
        parts.append(_identifier(name))
        parts.append(_MANGLING_SUFFIX[node.kind])
    return "".join(parts)


@dataclass(frozen=True, slots=True)
class Field:
    """A stored property."""

    name: str
    type_name: str | None
    is_var: bool

    @classmethod
    def from_record(cls, record: FieldRecord) -> "Field":
        return cls(record.name, str(record.type_name) if record.type_name else None, record.is_var)


@dataclass(frozen=True, slots=True)
class EnumCase:
    name: str
    payload_type: str | None
    is_indirect: bool


@dataclass(frozen=True, slots=True)
class Requirement:
    kind: ProtocolRequirementKind | None
    is_instance: bool
    has_default_implementation: bool


class _Wrapper:
    """Name surface shared by every wrapper.

    Names are resolved once at construction; kind-specific data is decoded on
    first access.
    """

    kind: ClassVar[ContextDescriptorKind]
    descriptor_type: ClassVar[type[ContextDescriptor]]

    def __init__(self, descriptor: ContextDescriptor) -> None:
        if not isinstance(descriptor, self.descriptor_type):
            raise TypeError(
                f"{type(self).__name__} needs a {self.descriptor_type.__name__}, "
                f"got {type(descriptor).__name__}"
            )
        self.descriptor = descriptor
        path = descriptor.path()
        self.name: str = path[-1]
        self.module_name: str = descriptor.module_name
        self.full_name: str = ".".join(path)
        self.qualified_name: str = ".".join(path[1:]) if len(path) > 1 else path[0]
        self._mangled_name: str | None = None

    @property
    def address(self) -> int:
        return self.descriptor.address

    @property
    def mangled_name(self) -> str:
        if self._mangled_name is None:
            self._mangled_name = mangle_context(self.descriptor)
        return self._mangled_name

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.full_name}>"


class Type(_Wrapper):
    """A nominal type (class, struct or enum) and the protocols it conforms to."""

    descriptor_type: ClassVar[type[ContextDescriptor]] = TypeContextDescriptor

    def __init__(
        self, descriptor: TypeContextDescriptor, conformances: Iterable[Conformance] = ()
    ) -> None:
        super().__init__(descriptor)
        self._conformances: dict[str, Conformance] = {}
        for conformance in conformances:
            self._attach(conformance)

    def _attach(self, conformance: Conformance) -> bool:
        """Attach a conformance unless one to the same protocol is present."""
        if conformance.protocol_full_name in self._conformances:
            return False
        self._conformances[conformance.protocol_full_name] = conformance
        return True

    @property
    def conformances(self) -> list[str]:
        """Short names of the protocols this type conforms to, in discovery order."""
        return [c.protocol_name for c in self._conformances.values()]

    @property
    def protocol_conformances(self) -> Mapping[str, Conformance]:
        """Conformances keyed by the protocol's fully qualified name."""
        return MappingProxyType(self._conformances)

    def conforms_to(self, protocol: str) -> bool:
        return protocol in self._conformances or protocol in self.conformances

    def describe(self) -> dict:
        return {
            "kind": self.kind.name.lower(),
            "name": self.name,
            "fullName": self.full_name,
            "module": self.module_name,
            "conformances": self.conformances,
        }


class Class(Type):
    kind: ClassVar[ContextDescriptorKind] = ContextDescriptorKind.CLASS
    descriptor_type: ClassVar[type[ContextDescriptor]] = ClassDescriptor
    descriptor: ClassDescriptor

    @property
    def superclass_name(self) -> str | None:
        superclass = self.descriptor.superclass
        return str(superclass) if superclass is not None else None

    @property
    def fields(self) -> list[Field]:
        return [Field.from_record(r) for r in self.descriptor.field_records]


class Struct(Type):
    kind: ClassVar[ContextDescriptorKind] = ContextDescriptorKind.STRUCT
    descriptor_type: ClassVar[type[ContextDescriptor]] = StructDescriptor
    descriptor: StructDescriptor

    @property
    def fields(self) -> list[Field]:
        return [Field.from_record(r) for r in self.descriptor.field_records]


class Enum(Type):
    kind: ClassVar[ContextDescriptorKind] = ContextDescriptorKind.ENUM
    descriptor_type: ClassVar[type[ContextDescriptor]] = EnumDescriptor
    descriptor: EnumDescriptor

    @property
    def cases(self) -> list[EnumCase]:
        payload_count = self.descriptor.num_payload_cases
        return [
            EnumCase(
                name=record.name,
                payload_type=str(record.type_name) if index < payload_count and record.type_name else None,
                is_indirect=record.is_indirect_case,
            )
            for index, record in enumerate(self.descriptor.field_records)
        ]

    @property
    def payload_cases(self) -> list[EnumCase]:
        return self.cases[: self.descriptor.num_payload_cases]

    @property
    def empty_cases(self) -> list[EnumCase]:
        return self.cases[self.descriptor.num_payload_cases :]


class Protocol(_Wrapper):
    """A protocol. Protocols never carry conformances of their own."""

    kind: ClassVar[ContextDescriptorKind] = ContextDescriptorKind.PROTOCOL
    descriptor_type: ClassVar[type[ContextDescriptor]] = ProtocolDescriptor
    descriptor: ProtocolDescriptor

    @property
    def requirements(self) -> list[Requirement]:
        return [
            Requirement(
                kind=r.kind,
                is_instance=r.flags.is_instance,
                has_default_implementation=r.default_implementation is not None,
            )
            for r in self.descriptor.requirements
        ]

    @property
    def associated_type_names(self) -> tuple[str, ...]:
        return self.descriptor.associated_type_names

    def describe(self) -> dict:
        return {
            "kind": "protocol",
            "name": self.name,
            "fullName": self.full_name,
            "module": self.module_name,
            "requirements": len(self.descriptor.requirements),
        }


WRAPPER_TYPES: dict[ContextDescriptorKind, type[_Wrapper]] = {
    Class.kind: Class,
    Struct.kind: Struct,
    Enum.kind: Enum,
    Protocol.kind: Protocol,
}
