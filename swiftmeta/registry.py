"""Process-wide registry of Swift types, built from every loaded module.

The registry is a point-in-time snapshot: it scans the host's modules once
and never refreshes. Use :meth:`Registry.rebuild` after modules are loaded or
unloaded.

Short names are a convenience index. When two types share a short name the
one registered last wins that key; both stay reachable through their
qualified names. No other priority rule is applied.
"""

import logging
import threading
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from types import MappingProxyType
from typing import ClassVar

from dataclasses_json import DataClassJsonMixin

from .conformances import Conformance, ConformanceRecord, UnresolvedConformanceTarget, decode_conformances
from .descriptors import (
    ClassDescriptor,
    EnumDescriptor,
    MalformedDescriptor,
    ProtocolDescriptor,
    StructDescriptor,
    TypeContextDescriptor,
    iter_protocol_descriptors,
    iter_type_descriptors,
)
from .host import Host, Module, ModuleUnreadable, StaticHost, current_modules, default_host
from .sections import SectionRanges, locate_sections
from .types import Class, Enum, Protocol, Struct, Type

logger = logging.getLogger(__name__)

ClassMap = Mapping[str, Class]
StructMap = Mapping[str, Struct]
EnumMap = Mapping[str, Enum]
ProtocolMap = Mapping[str, Protocol]


@dataclass(frozen=True)
class ModuleSummary(DataClassJsonMixin):
    """Number of index keys per category of one Swift module."""

    classes: int
    structs: int
    enums: int
    protocols: int


class SwiftModule:
    """Types declared in one Swift module, by short and module-relative name."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._classes: dict[str, Class] = {}
        self._structs: dict[str, Struct] = {}
        self._enums: dict[str, Enum] = {}
        self._protocols: dict[str, Protocol] = {}

    @property
    def classes(self) -> ClassMap:
        return MappingProxyType(self._classes)

    @property
    def structs(self) -> StructMap:
        return MappingProxyType(self._structs)

    @property
    def enums(self) -> EnumMap:
        return MappingProxyType(self._enums)

    @property
    def protocols(self) -> ProtocolMap:
        return MappingProxyType(self._protocols)

    def add_class(self, klass: Class) -> None:
        self._classes[klass.name] = klass
        self._classes[klass.qualified_name] = klass

    def add_struct(self, struct: Struct) -> None:
        self._structs[struct.name] = struct
        self._structs[struct.qualified_name] = struct

    def add_enum(self, enum: Enum) -> None:
        self._enums[enum.name] = enum
        self._enums[enum.qualified_name] = enum

    def add_protocol(self, protocol: Protocol) -> None:
        self._protocols[protocol.name] = protocol
        self._protocols[protocol.qualified_name] = protocol

    def summary(self) -> ModuleSummary:
        return ModuleSummary(
            classes=len(self._classes),
            structs=len(self._structs),
            enums=len(self._enums),
            protocols=len(self._protocols),
        )

    def to_json(self) -> dict[str, int]:
        """Per-category key counts, for diagnostics."""
        return self.summary().to_dict()

    def __repr__(self) -> str:
        return f"<SwiftModule {self.name} {self.to_json()}>"


@dataclass(frozen=True)
class _LoadedModule:
    position: int
    module: Module
    sections: SectionRanges


class Registry:
    """Every Swift type and protocol found in the host's modules.

    Construction scans all modules immediately. Modules that cannot be read
    are skipped and noted in ``warnings``; a host that cannot enumerate
    modules at all raises HostUnavailable.
    """

    _shared: ClassVar["Registry | None"] = None
    _shared_lock: ClassVar[threading.Lock] = threading.Lock()

    def __init__(self, host: Host) -> None:
        self.warnings: list[str] = []
        self._modules: dict[str, SwiftModule] = {}
        self._classes: dict[str, Class] = {}
        self._structs: dict[str, Struct] = {}
        self._enums: dict[str, Enum] = {}
        self._protocols: dict[str, Protocol] = {}
        self._types: list[Type] = []
        self._protocol_list: list[Protocol] = []
        # Descriptor address lookups: per host module first, then process-wide.
        self._local_types: dict[int, dict[int, Type]] = {}
        self._global_types: dict[int, Type] = {}
        self._local_protocols: dict[int, dict[int, Protocol]] = {}
        self._global_protocols: dict[int, Protocol] = {}
        self._build(current_modules(host))

    # -- construction ------------------------------------------------------

    @classmethod
    def shared(cls, host: Host | None = None) -> "Registry":
        """Return the shared registry, building it on first use."""
        with cls._shared_lock:
            if cls._shared is None:
                cls._shared = cls(host if host is not None else default_host())
            return cls._shared

    @classmethod
    def rebuild(cls, host: Host | None = None) -> "Registry":
        """Build a fresh snapshot and make it the shared registry."""
        registry = cls(host if host is not None else default_host())
        with cls._shared_lock:
            cls._shared = registry
        return registry

    @classmethod
    def reset(cls) -> None:
        """Forget the shared registry; the next shared() call rebuilds it."""
        with cls._shared_lock:
            cls._shared = None

    @classmethod
    def from_modules(cls, modules: Sequence[Module]) -> "Registry":
        return cls(StaticHost(modules))

    def _build(self, modules: list[Module]) -> None:
        loaded: list[_LoadedModule] = []
        for position, module in enumerate(modules):
            try:
                sections = locate_sections(module)
                if sections is None:
                    continue
                loaded.append(_LoadedModule(position, module, sections))
                self._load_descriptors(position, module, sections)
            except ModuleUnreadable as exc:
                self._warn(module, exc)

        for entry in loaded:
            if entry.sections.conformances is None:
                continue
            try:
                for record in decode_conformances(entry.module, entry.sections.conformances):
                    self._attach_conformance(entry.position, record)
            except ModuleUnreadable as exc:
                self._warn(entry.module, exc)

        logger.debug(
            "Registry built: %d modules, %d types, %d protocols",
            len(self._modules),
            len(self._types),
            len(self._protocol_list),
        )

    def _warn(self, module: Module, exc: Exception) -> None:
        message = f"{module.name}: {exc}"
        logger.warning("Skipping unreadable module %s", message)
        self.warnings.append(message)

    def _load_descriptors(self, position: int, module: Module, sections: SectionRanges) -> None:
        if sections.types is not None:
            for descriptor in iter_type_descriptors(module, sections.types):
                try:
                    self._register_type(position, descriptor)
                except (MalformedDescriptor, RecursionError) as exc:
                    logger.warning("Skipping type at %#x in %s: %s", descriptor.address, module.name, exc)

        if sections.protocols is not None:
            for protocol_descriptor in iter_protocol_descriptors(module, sections.protocols):
                try:
                    self._register_protocol(position, protocol_descriptor)
                except (MalformedDescriptor, RecursionError) as exc:
                    logger.warning(
                        "Skipping protocol at %#x in %s: %s",
                        protocol_descriptor.address,
                        module.name,
                        exc,
                    )

    def _get_module(self, name: str) -> SwiftModule:
        if name not in self._modules:
            self._modules[name] = SwiftModule(name)
        return self._modules[name]

    def _register_type(self, position: int, descriptor: TypeContextDescriptor) -> None:
        wrapper: Type
        if isinstance(descriptor, ClassDescriptor):
            klass = Class(descriptor)
            self._classes[klass.name] = klass
            self._classes[klass.full_name] = klass
            self._get_module(klass.module_name).add_class(klass)
            wrapper = klass
        elif isinstance(descriptor, StructDescriptor):
            struct = Struct(descriptor)
            self._structs[struct.name] = struct
            self._structs[struct.full_name] = struct
            self._get_module(struct.module_name).add_struct(struct)
            wrapper = struct
        elif isinstance(descriptor, EnumDescriptor):
            enum = Enum(descriptor)
            self._enums[enum.name] = enum
            self._enums[enum.full_name] = enum
            self._get_module(enum.module_name).add_enum(enum)
            wrapper = enum
        else:
            raise MalformedDescriptor(f"Unsupported type descriptor {descriptor!r}")

        self._types.append(wrapper)
        self._local_types.setdefault(position, {})[descriptor.address] = wrapper
        self._global_types[descriptor.address] = wrapper

    def _register_protocol(self, position: int, descriptor: ProtocolDescriptor) -> None:
        proto = Protocol(descriptor)
        self._protocols[proto.name] = proto
        self._protocols[proto.full_name] = proto
        self._get_module(proto.module_name).add_protocol(proto)
        self._protocol_list.append(proto)
        self._local_protocols.setdefault(position, {})[descriptor.address] = proto
        self._global_protocols[descriptor.address] = proto

    # -- conformances ------------------------------------------------------

    def _conforming_type(self, position: int, record: ConformanceRecord) -> Type:
        if record.type_address is not None:
            wrapper = self._local_types.get(position, {}).get(record.type_address)
            if wrapper is None:
                wrapper = self._global_types.get(record.type_address)
            if wrapper is not None:
                return wrapper
        target = record.objc_class_name or (
            f"{record.type_address:#x}" if record.type_address is not None else "<unknown>"
        )
        raise UnresolvedConformanceTarget(f"Conformance at {record.address:#x} targets {target}")

    def _protocol_names(self, position: int, record: ConformanceRecord) -> tuple[str, str]:
        if record.protocol_address is not None:
            proto = self._local_protocols.get(position, {}).get(record.protocol_address)
            if proto is None:
                proto = self._global_protocols.get(record.protocol_address)
            if proto is not None:
                return proto.name, proto.full_name
        descriptor = record.protocol_descriptor()
        return descriptor.name, descriptor.full_name

    def _attach_conformance(self, position: int, record: ConformanceRecord) -> None:
        try:
            wrapper = self._conforming_type(position, record)
            name, full_name = self._protocol_names(position, record)
        except UnresolvedConformanceTarget as exc:
            logger.debug("Dropping conformance: %s", exc)
            return
        except MalformedDescriptor as exc:
            logger.debug("Dropping conformance at %#x: %s", record.address, exc)
            return
        wrapper._attach(Conformance(name, full_name, record))

    # -- views -------------------------------------------------------------

    @property
    def modules(self) -> Mapping[str, SwiftModule]:
        return MappingProxyType(self._modules)

    @property
    def classes(self) -> ClassMap:
        return MappingProxyType(self._classes)

    @property
    def structs(self) -> StructMap:
        return MappingProxyType(self._structs)

    @property
    def enums(self) -> EnumMap:
        return MappingProxyType(self._enums)

    @property
    def protocols(self) -> ProtocolMap:
        return MappingProxyType(self._protocols)

    @property
    def types(self) -> list[Type]:
        """Every class, struct and enum, in registration order."""
        return list(self._types)

    def types_in(self, module: Module) -> list[Type]:
        """The types whose descriptors live in host *module*."""
        return [t for t in self._types if t.descriptor.module is module]

    def summary(self) -> dict[str, dict[str, int]]:
        return {name: module.to_json() for name, module in self._modules.items()}
