"""Primitive reads over a module: records, relative pointers and strings."""

import struct

from ..host import Module, ModuleUnreadable
from .layouts import RecordLayout

MAX_STRING_LENGTH = 4096
_CHUNK = 64

_I32 = struct.Struct("<i")


def read_record(module: Module, address: int, layout: RecordLayout) -> dict[str, int]:
    """Read and unpack one *layout* record at *address*."""
    data = module.read_bytes(address, layout.size)
    if len(data) != layout.size:
        raise ModuleUnreadable(f"Short read of {layout.name} at {address:#x}")
    return layout.unpack(data)


def read_i32(module: Module, address: int) -> int:
    return _I32.unpack(module.read_bytes(address, 4))[0]


def read_pointer(module: Module, address: int) -> int:
    size = module.pointer_size
    return int.from_bytes(module.read_bytes(address, size), "little")


def resolve_direct(field_address: int, offset: int) -> int | None:
    """Resolve a relative direct pointer; an offset of zero means no value."""
    if offset == 0:
        return None
    return field_address + offset


def resolve_indirectable(module: Module, field_address: int, offset: int) -> int | None:
    """Resolve a relative indirectable pointer.

    A set low bit means the offset leads to an absolute pointer to the target
    (typically a GOT slot). A null slot is treated like a zero offset.
    """
    if offset == 0:
        return None
    if offset & 1:
        target = read_pointer(module, field_address + (offset & ~1))
        return target or None
    return field_address + offset


def resolve_field(record_address: int, layout: RecordLayout, field: str, offset: int) -> int | None:
    """Resolve the relative direct *field* of a record read at *record_address*."""
    return resolve_direct(record_address + layout.offset_of(field), offset)


def read_cstring(module: Module, address: int, limit: int = MAX_STRING_LENGTH) -> str:
    """Read a NUL-terminated UTF-8 string, truncating at *limit* bytes."""
    return read_cbytes(module, address, limit).decode("utf-8", errors="replace")


def read_cbytes(module: Module, address: int, limit: int = MAX_STRING_LENGTH) -> bytes:
    data = bytearray()
    step = _CHUNK
    while len(data) < limit:
        try:
            chunk = module.read_bytes(address + len(data), step)
        except ModuleUnreadable:
            if step == 1:
                raise
            # The string may end close to the end of its mapping.
            step = 1
            continue
        nul = chunk.find(b"\x00")
        if nul != -1:
            data.extend(chunk[:nul])
            break
        data.extend(chunk)
    return bytes(data[:limit])
