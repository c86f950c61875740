"""swiftmeta - Swift type metadata reader for loaded binary images."""

from importlib.metadata import PackageNotFoundError, version

from .host import HostUnavailable, ModuleUnreadable, StaticHost, set_default_host
from .registry import Registry, SwiftModule
from .runtime import Runtime, Swift

try:
    __version__ = version("swiftmeta")
except PackageNotFoundError:
    __version__ = "(local)"
