"""Modules backed by buffers: binaries on disk or bytes in memory."""

import logging
from collections.abc import Sequence
from pathlib import Path

from .binfmt import ImageHeader, Segment, parse_header
from .host import Module, ModuleUnreadable

logger = logging.getLogger(__name__)


class MemoryModule:
    """A module over one flat buffer mapped at *base*."""

    def __init__(
        self, name: str, base: int, data: bytes, path: str = "", pointer_size: int = 8
    ) -> None:
        self.name = name
        self.base = base
        self.path = path
        self.pointer_size = pointer_size
        self._data = bytes(data)

    @property
    def size(self) -> int:
        return len(self._data)

    def read_bytes(self, address: int, length: int) -> bytes:
        start = address - self.base
        if length < 0 or start < 0 or start + length > len(self._data):
            raise ModuleUnreadable(f"{self.name}: {address:#x}+{length} is outside the module")
        return self._data[start : start + length]

    def __repr__(self) -> str:
        return f"MemoryModule({self.name!r}, base={self.base:#x}, size={len(self._data)})"


class ImageModule:
    """A binary on disk, mapped at its preferred addresses.

    Reads are resolved through the image's segments: file-backed bytes come
    from the file, the rest of a segment reads as zeros.
    """

    def __init__(self, path: str, data: bytes, header: ImageHeader) -> None:
        self.path = path
        self.name = Path(path).name
        self.header = header
        self.pointer_size = header.pointer_size
        self.base = header.preferred_base
        self._data = data
        self._segments = tuple(
            s for s in header.segments if s.vmsize and s.name != "__PAGEZERO"
        )

    @classmethod
    def open(cls, path: str | Path) -> "ImageModule":
        try:
            data = Path(path).read_bytes()
        except OSError as exc:
            raise ModuleUnreadable(f"Cannot read {path}: {exc}") from exc

        def read(offset: int, length: int) -> bytes:
            return data[offset : offset + length]

        return cls(str(path), data, parse_header(read))

    def _segment_for(self, address: int, length: int) -> Segment:
        for segment in self._segments:
            if segment.contains(address, length):
                return segment
        raise ModuleUnreadable(f"{self.name}: {address:#x}+{length} is not mapped")

    def read_bytes(self, address: int, length: int) -> bytes:
        if length < 0:
            raise ModuleUnreadable(f"{self.name}: negative read length {length}")
        if length == 0:
            return b""
        segment = self._segment_for(address, length)
        delta = address - segment.vmaddr
        backed = max(0, min(length, segment.filesize - delta))
        start = segment.fileoff + delta
        chunk = self._data[start : start + backed] if backed else b""
        if len(chunk) != backed:
            raise ModuleUnreadable(f"{self.name}: segment {segment.name} is truncated")
        return chunk + bytes(length - backed)

    def __repr__(self) -> str:
        return f"ImageModule({self.path!r}, base={self.base:#x})"


class ImageHost:
    """A host whose modules are binaries on disk.

    Images that cannot be opened are reported through ``failures`` and left
    out, so one bad path does not hide the others.
    """

    def __init__(self, paths: Sequence[str | Path]) -> None:
        self.paths = [str(p) for p in paths]
        self.failures: dict[str, str] = {}
        self._modules: list[Module] | None = None

    def current_modules(self) -> Sequence[Module]:
        if self._modules is None:
            modules: list[Module] = []
            for path in self.paths:
                try:
                    modules.append(ImageModule.open(path))
                except ModuleUnreadable as exc:
                    logger.warning("Cannot load image %s: %s", path, exc)
                    self.failures[path] = str(exc)
            self._modules = modules
        return list(self._modules)
