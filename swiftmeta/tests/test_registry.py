"""Tests for the type registry"""

# pylint: disable=redefined-outer-name,unused-variable,expression-not-assigned,singleton-comparison

import pytest
from image_builder import ImageBuilder, Ref

from swiftmeta.host import HostUnavailable, StaticHost, set_default_host
from swiftmeta.images import MemoryModule
from swiftmeta.registry import Registry, SwiftModule
from swiftmeta.types import Class, Struct

LIB_BASE = 0x200000000


class FailingHost:
    def current_modules(self):
        raise OSError("process is gone")


def describe_registry():
    def indexes_types_by_short_and_full_name(expect, app_image):
        registry = Registry.from_modules([app_image.build_module()])

        foo = registry.classes["Foo"]
        expect(registry.classes["App.Foo"]) == foo
        expect(isinstance(foo, Class)) == True
        expect(isinstance(registry.structs["Bar"], Struct)) == True
        expect(registry.structs["App.Bar"]) == registry.structs["Bar"]
        expect(registry.protocols["P"].full_name) == "App.P"
        expect(foo.conformances) == ["P"]
        expect(registry.structs["Bar"].conformances) == []

    def summarizes_modules(expect, app_image):
        registry = Registry.from_modules([app_image.build_module()])

        expect(list(registry.modules)) == ["App"]
        expect(registry.modules["App"].to_json()) == {
            "classes": 1,
            "structs": 1,
            "enums": 0,
            "protocols": 1,
        }
        expect(registry.summary()) == {"App": registry.modules["App"].to_json()}

    def indexes_nested_types_by_qualified_name(expect):
        builder = ImageBuilder()
        app = builder.swift_module("App")
        outer = builder.struct("Outer", app)
        builder.enum("Inner", outer, empty_cases=["a", "b"])
        registry = Registry.from_modules([builder.build_module()])

        inner = registry.enums["App.Outer.Inner"]
        expect(registry.enums["Inner"]) == inner
        expect(registry.modules["App"].enums["Outer.Inner"]) == inner
        expect(registry.modules["App"].enums["Inner"]) == inner
        expect("App.Outer.Inner" in registry.modules["App"].enums) == False

    def lists_types_in_registration_order(expect):
        builder = ImageBuilder()
        app = builder.swift_module("App")
        builder.enum("C", app, empty_cases=["x"])
        builder.struct("A", app)
        builder.klass("B", app)
        registry = Registry.from_modules([builder.build_module()])

        expect([t.name for t in registry.types]) == ["C", "A", "B"]

    def builds_the_same_snapshot_twice(expect, app_image):
        module = app_image.build_module()
        first = Registry.from_modules([module])
        second = Registry.from_modules([module])

        expect(sorted(first.classes)) == sorted(second.classes)
        expect(sorted(first.structs)) == sorted(second.structs)
        expect(sorted(first.protocols)) == sorted(second.protocols)
        expect(first.classes["Foo"].conformances) == second.classes["Foo"].conformances
        expect(first.summary()) == second.summary()

    def ignores_modules_without_swift_metadata(expect, app_image):
        plain = ImageBuilder("libc", base=LIB_BASE).build_module()
        registry = Registry.from_modules([plain, app_image.build_module()])

        expect(list(registry.modules)) == ["App"]
        expect(registry.warnings) == []

    def contains_unreadable_modules(expect, app_image):
        broken = MemoryModule("Broken", 0x300000000, bytes(64))
        registry = Registry.from_modules([broken, app_image.build_module()])

        expect(len(registry.warnings)) == 1
        expect(registry.warnings[0].startswith("Broken:")) == True
        expect(registry.classes["Foo"].conformances) == ["P"]

    def skips_malformed_descriptors(expect):
        builder = ImageBuilder()
        app = builder.swift_module("App")
        builder.struct("Good", app)
        builder.raw_descriptor(7)
        builder.struct("Orphan", Ref(None))
        registry = Registry.from_modules([builder.build_module()])

        expect(list(registry.structs)) == ["Good", "App.Good"]

    def skips_types_nested_in_an_extension_of_themselves(expect):
        builder = ImageBuilder()
        app = builder.swift_module("App")
        builder.struct("Good", app)
        extension = builder.extension(app, app)
        looped = builder.struct("Looped", extension)
        builder.retarget_extension(extension, looped)
        registry = Registry.from_modules([builder.build_module()])

        expect(list(registry.structs)) == ["Good", "App.Good"]
        expect(registry.modules["App"].to_json()["structs"]) == 1

    def files_extension_members_under_the_declaring_module(expect):
        builder = ImageBuilder()
        lib = builder.swift_module("Lib")
        base = builder.struct("Base", lib)
        app = builder.swift_module("App")
        extension = builder.extension(app, base)
        builder.enum("Nested", extension, empty_cases=["a"])
        registry = Registry.from_modules([builder.build_module()])

        nested = registry.enums["Lib.Base.Nested"]
        expect(nested.module_name) == "App"
        expect(registry.enums["Nested"]) == nested
        expect(registry.modules["App"].enums["Base.Nested"]) == nested
        expect("Nested" in registry.modules["Lib"].enums) == False
        expect(registry.summary()) == {
            "Lib": {"classes": 0, "structs": 1, "enums": 0, "protocols": 0},
            "App": {"classes": 0, "structs": 0, "enums": 2, "protocols": 0},
        }

    def lists_types_per_host_module(expect, app_image):
        lib = ImageBuilder("Lib", base=LIB_BASE)
        lib.struct("Baz", lib.swift_module("Lib"))
        app_module = app_image.build_module()
        lib_module = lib.build_module()
        registry = Registry.from_modules([app_module, lib_module])

        expect([t.name for t in registry.types_in(app_module)]) == ["Foo", "Bar"]
        expect([t.name for t in registry.types_in(lib_module)]) == ["Baz"]


def describe_conformances():
    def attaches_each_conformance_once(expect):
        builder = ImageBuilder()
        app = builder.swift_module("App")
        foo = builder.struct("Foo", app)
        p = builder.protocol("P", app)
        q = builder.protocol("Q", app)
        builder.conformance(p, foo)
        builder.conformance(q, foo)
        builder.conformance(p, foo)
        registry = Registry.from_modules([builder.build_module()])

        foo_type = registry.structs["Foo"]
        expect(foo_type.conformances) == ["P", "Q"]
        expect(list(foo_type.protocol_conformances)) == ["App.P", "App.Q"]
        expect(foo_type.conforms_to("Q")) == True
        expect(foo_type.conforms_to("App.P")) == True
        expect(foo_type.conforms_to("R")) == False

    def drops_conformances_of_unknown_types(expect):
        builder = ImageBuilder()
        app = builder.swift_module("App")
        foo = builder.struct("Foo", app)
        hidden = builder.struct("Hidden", app, register=False)
        p = builder.protocol("P", app)
        builder.conformance(p, hidden)
        builder.objc_conformance(p, "NSObject")
        builder.conformance(p, foo)
        registry = Registry.from_modules([builder.build_module()])

        expect("Hidden" in registry.structs) == False
        expect(registry.structs["Foo"].conformances) == ["P"]

    def names_protocols_that_are_not_registered(expect):
        builder = ImageBuilder()
        app = builder.swift_module("App")
        foo = builder.struct("Foo", app)
        p = builder.protocol("Unlisted", app, register=False)
        builder.conformance(p, foo)
        registry = Registry.from_modules([builder.build_module()])

        expect(registry.structs["Foo"].conformances) == ["Unlisted"]

    def resolves_protocols_in_other_modules(expect):
        lib = ImageBuilder("Lib", base=LIB_BASE)
        lib_p = lib.protocol("P", lib.swift_module("Lib"))
        lib_module = lib.build_module()

        app = ImageBuilder("App")
        foo = app.struct("Foo", app.swift_module("App"))
        slot = app.external_slot(lib.address(lib_p))
        app.conformance(Ref(slot, low_bits=1), foo)
        app_module = app.build_module()

        registry = Registry.from_modules([lib_module, app_module])
        expect(registry.structs["Foo"].conformances) == ["P"]
        expect(list(registry.structs["Foo"].protocol_conformances)) == ["Lib.P"]

    def resolves_retroactive_conformances(expect):
        lib = ImageBuilder("Lib", base=LIB_BASE)
        lib_module_descriptor = lib.swift_module("Lib")
        widget = lib.struct("Widget", lib_module_descriptor)
        lib_module = lib.build_module()

        app = ImageBuilder("App")
        p = app.protocol("P", app.swift_module("App"))
        slot = app.external_slot(lib.address(widget))
        app.conformance(p, slot, type_reference_kind=1)
        app_module = app.build_module()

        registry = Registry.from_modules([lib_module, app_module])
        expect(registry.structs["Lib.Widget"].conformances) == ["P"]

    def prefers_types_from_the_same_module(expect):
        first = ImageBuilder("First")
        first_foo = first.struct("Foo", first.swift_module("First"))
        first_module = first.build_module()

        second = ImageBuilder("Second")
        second_app = second.swift_module("Second")
        second_foo = second.struct("Foo", second_app)
        p = second.protocol("P", second_app)
        second.conformance(p, second_foo)
        second_module = second.build_module()

        expect(first_foo) == second_foo
        registry = Registry.from_modules([second_module, first_module])
        expect(registry.structs["Second.Foo"].conformances) == ["P"]
        expect(registry.structs["First.Foo"].conformances) == []


def describe_name_collisions():
    def last_registration_wins_the_short_name(expect):
        first = ImageBuilder("First")
        first.struct("Foo", first.swift_module("First"))
        second = ImageBuilder("Second", base=LIB_BASE)
        second.struct("Foo", second.swift_module("Second"))
        registry = Registry.from_modules([first.build_module(), second.build_module()])

        expect(registry.structs["Foo"].full_name) == "Second.Foo"
        expect(registry.structs["First.Foo"].module_name) == "First"
        expect(registry.structs["Second.Foo"].module_name) == "Second"
        expect(len(registry.types)) == 2

    def keeps_nested_types_apart_within_a_module(expect):
        builder = ImageBuilder()
        app = builder.swift_module("App")
        first = builder.struct("First", app)
        builder.struct("Key", first)
        second = builder.struct("Second", app)
        builder.struct("Key", second)
        registry = Registry.from_modules([builder.build_module()])

        expect(registry.structs["Key"].full_name) == "App.Second.Key"
        expect(registry.structs["App.First.Key"].qualified_name) == "First.Key"
        expect(registry.modules["App"].structs["Key"]) == registry.structs["App.Second.Key"]
        expect(registry.modules["App"].structs["First.Key"]) == registry.structs["App.First.Key"]
        expect(len(registry.types)) == 4


def describe_shared_registry():
    def needs_a_host(expect):
        with pytest.raises(HostUnavailable):
            Registry.shared()

    def reports_failing_hosts(expect):
        with pytest.raises(HostUnavailable):
            Registry(FailingHost())

    def is_built_once(expect, app_image):
        set_default_host(StaticHost([app_image.build_module()]))

        registry = Registry.shared()
        expect(Registry.shared()) == registry
        expect(registry.classes["Foo"].full_name) == "App.Foo"

    def can_be_rebuilt(expect, app_image):
        host = StaticHost([app_image.build_module()])
        registry = Registry.shared(host)

        rebuilt = Registry.rebuild(host)
        expect(rebuilt is registry) == False
        expect(Registry.shared()) == rebuilt

    def can_be_reset(expect, app_image):
        host = StaticHost([app_image.build_module()])
        registry = Registry.shared(host)

        Registry.reset()
        expect(Registry.shared(host) is registry) == False


def describe_swift_module():
    def counts_keys_per_category(expect, app_image):
        registry = Registry.from_modules([app_image.build_module()])
        module = SwiftModule("Copy")
        module.add_class(registry.classes["Foo"])
        module.add_struct(registry.structs["Bar"])

        expect(module.to_json()) == {"classes": 1, "structs": 1, "enums": 0, "protocols": 0}
        expect(module.summary().classes) == 1
