"""Unit tests configuration file."""

import pytest
from image_builder import ImageBuilder

from swiftmeta.host import set_default_host
from swiftmeta.registry import Registry


def pytest_configure(config):
    """Disable verbose output when running tests."""
    terminal = config.pluginmanager.getplugin("terminal")
    if terminal:
        terminal.TerminalReporter.showfspath = False


@pytest.fixture(autouse=True)
def clean_runtime_state():
    set_default_host(None)
    Registry.reset()
    yield
    set_default_host(None)
    Registry.reset()


@pytest.fixture
def app_image():
    """Module ``App`` with class Foo, struct Bar, protocol P and ``Foo: P``."""
    builder = ImageBuilder("App")
    app = builder.swift_module("App")
    foo = builder.klass("Foo", app)
    builder.struct("Bar", app)
    p = builder.protocol("P", app)
    builder.conformance(p, foo)
    return builder
