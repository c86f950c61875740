"""Tests for conformance records"""

# pylint: disable=redefined-outer-name,unused-variable,expression-not-assigned,singleton-comparison

from image_builder import ImageBuilder, Ref

from swiftmeta.abi.layouts import TypeReferenceKind
from swiftmeta.conformances import decode_conformance, decode_conformances
from swiftmeta.sections import locate_sections


def describe_decode_conformance():
    def decodes_a_direct_type_reference(expect):
        builder = ImageBuilder()
        app = builder.swift_module("App")
        foo = builder.struct("Foo", app)
        p = builder.protocol("P", app)
        record = builder.conformance(p, foo)
        module = builder.build_module()

        conformance = decode_conformance(module, builder.address(record))
        expect(conformance.protocol_address) == builder.address(p)
        expect(conformance.type_address) == builder.address(foo)
        expect(conformance.type_reference_kind) == TypeReferenceKind.DIRECT_TYPE_DESCRIPTOR
        expect(conformance.protocol_descriptor().name) == "P"

    def decodes_an_indirect_type_reference(expect):
        builder = ImageBuilder()
        app = builder.swift_module("App")
        foo = builder.struct("Foo", app)
        p = builder.protocol("P", app)
        slot = builder.pointer_slot(foo)
        record = builder.conformance(p, slot, type_reference_kind=1)
        module = builder.build_module()

        conformance = decode_conformance(module, builder.address(record))
        expect(conformance.type_address) == builder.address(foo)

    def decodes_an_indirect_protocol(expect):
        builder = ImageBuilder()
        app = builder.swift_module("App")
        foo = builder.struct("Foo", app)
        p = builder.protocol("P", app)
        slot = builder.pointer_slot(p)
        record = builder.conformance(Ref(slot, low_bits=1), foo)
        module = builder.build_module()

        conformance = decode_conformance(module, builder.address(record))
        expect(conformance.protocol_address) == builder.address(p)

    def keeps_objc_class_names(expect):
        builder = ImageBuilder()
        app = builder.swift_module("App")
        p = builder.protocol("P", app)
        record = builder.objc_conformance(p, "NSObject")
        module = builder.build_module()

        conformance = decode_conformance(module, builder.address(record))
        expect(conformance.type_address) == None
        expect(conformance.objc_class_name) == "NSObject"


def describe_decode_conformances():
    def yields_each_record(expect):
        builder = ImageBuilder()
        app = builder.swift_module("App")
        foo = builder.struct("Foo", app)
        bar = builder.klass("Bar", app)
        p = builder.protocol("P", app)
        builder.conformance(p, foo)
        builder.conformance(p, bar)
        module = builder.build_module()

        records = decode_conformances(module, locate_sections(module).conformances)
        expect(len(records)) == 2
        expect([r.type_address for r in records]) == [builder.address(foo), builder.address(bar)]

    def can_be_iterated_again(expect):
        builder = ImageBuilder()
        app = builder.swift_module("App")
        foo = builder.struct("Foo", app)
        p = builder.protocol("P", app)
        builder.conformance(p, foo)
        module = builder.build_module()

        records = decode_conformances(module, locate_sections(module).conformances)
        expect(list(records)) == list(records)
        expect(len(list(records))) == 1

    def ignores_null_entries(expect):
        builder = ImageBuilder()
        app = builder.swift_module("App")
        foo = builder.struct("Foo", app)
        p = builder.protocol("P", app)
        builder.conformances.append(None)
        builder.conformance(p, foo)
        builder.conformances.append(None)
        module = builder.build_module()

        records = decode_conformances(module, locate_sections(module).conformances)
        expect(len(records)) == 1
        expect([r.type_address for r in records]) == [builder.address(foo)]

    def skips_unreadable_records(expect):
        builder = ImageBuilder()
        app = builder.swift_module("App")
        foo = builder.struct("Foo", app)
        p = builder.protocol("P", app)
        builder.conformance(p, foo)
        builder.conformances.append(0x7FFFFF00)
        builder.conformance(p, foo, type_reference_kind=5)
        module = builder.build_module()

        records = list(decode_conformances(module, locate_sections(module).conformances))
        expect(len(records)) == 1
