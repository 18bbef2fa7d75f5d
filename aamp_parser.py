#!/usr/bin/env python3
"""
AAMP v2 Binary Parser
=====================

Decodes Nintendo AAMP (binary parameter archive) version 2 files, as used by
The Legend of Zelda: Breath of the Wild, into a ParameterIO tree.

File Structure:
--------------
| Offset | Size     | Field                                         |
|--------|----------|-----------------------------------------------|
| 0x00   | 4 bytes  | Magic "AAMP"                                  |
| 0x04   | u32      | Version (must be 2)                           |
| 0x08   | u32      | Flags (bit 0 = little endian, bit 1 = UTF-8)  |
| 0x0C   | u32      | File size                                     |
| 0x10   | u32      | ParameterIO version                           |
| 0x14   | u32      | Root list offset, relative to 0x30            |
| 0x18   | u32      | Number of lists                               |
| 0x1C   | u32      | Number of objects                             |
| 0x20   | u32      | Number of parameters                          |
| 0x24   | u32      | Data section size                             |
| 0x28   | u32      | String section size                           |
| 0x2C   | u32      | Unknown section size (always 0)               |
| 0x30   | variable | ParameterIO type, NUL-terminated, 4-aligned   |

Tables (all offsets in 4-byte units, relative to the entry holding them):
-------------------------------------------------------------------------
    List entry   (12 bytes): hash u32, lists off u16, lists count u16,
                             objects off u16, objects count u16
    Object entry  (8 bytes): hash u32, params off u16, params count u16
    Param entry   (8 bytes): hash u32, data off u24, type u8

Buffer parameters are preceded by a u32 element count; their data offset
points at the first element, just past the count.

Usage:
------
    python aamp_parser.py Enemy_Lizalfos.bxml
    python aamp_parser.py Enemy_Lizalfos.bxml --names botw_names.txt --tree
"""

import argparse
import logging
import struct
import sys
from dataclasses import dataclass
from typing import Optional, Set

from aamp_errors import (
    AampError,
    CorruptData,
    InvalidMagic,
    UnexpectedEof,
    UnknownTypeTag,
    UnsupportedVersion,
)
from aamp_names import NameTable
from aamp_types import (
    AAMP_VERSION,
    CURVE_FLOAT_COUNT,
    MAX_DEPTH,
    TYPE_INFO,
    Curve,
    Name,
    ParameterIO,
    ParameterList,
    ParameterObject,
    ParameterType,
    Value,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

MAGIC = b"AAMP"
HEADER_SIZE = 0x30

FLAG_LITTLE_ENDIAN = 0x01
FLAG_UTF8 = 0x02

HEADER_STRUCT = struct.Struct("<4s11I")
LIST_STRUCT = struct.Struct("<IHHHH")
OBJECT_STRUCT = struct.Struct("<IHH")
PARAM_STRUCT = struct.Struct("<II")
U32_STRUCT = struct.Struct("<I")
CURVE_STRUCT = struct.Struct(f"<II{CURVE_FLOAT_COUNT}f")

# Fixed-size scalar and vector payloads
SCALAR_STRUCTS = {
    ParameterType.BOOL: struct.Struct("<I"),
    ParameterType.F32: struct.Struct("<f"),
    ParameterType.INT: struct.Struct("<i"),
    ParameterType.U32: struct.Struct("<I"),
    ParameterType.VEC2: struct.Struct("<2f"),
    ParameterType.VEC3: struct.Struct("<3f"),
    ParameterType.VEC4: struct.Struct("<4f"),
    ParameterType.COLOR: struct.Struct("<4f"),
    ParameterType.QUAT: struct.Struct("<4f"),
}

# struct format code and size of each buffer element kind
BUFFER_ELEMENTS = {
    "int": ("i", 4),
    "u32": ("I", 4),
    "float": ("f", 4),
    "u8": ("B", 1),
}


# =============================================================================
# Header
# =============================================================================

@dataclass
class AampHeader:
    """48-byte AAMP header"""
    version: int
    flags: int
    file_size: int
    pio_version: int
    pio_offset: int
    list_count: int
    object_count: int
    param_count: int
    data_section_size: int
    string_section_size: int
    unknown_section_size: int = 0

    @classmethod
    def parse(cls, data: bytes) -> "AampHeader":
        """Parse and check the header at the start of data"""
        if len(data) >= 4 and data[:4] != MAGIC:
            raise InvalidMagic(bytes(data[:4]))
        if len(data) < HEADER_SIZE:
            raise UnexpectedEof(0, HEADER_SIZE, len(data))

        fields = HEADER_STRUCT.unpack_from(data, 0)
        header = cls(*fields[1:])

        if header.version != AAMP_VERSION:
            raise UnsupportedVersion(header.version)
        if not header.flags & FLAG_LITTLE_ENDIAN:
            raise CorruptData(f"Big-endian archives are not supported (flags=0x{header.flags:X})")
        if header.file_size > len(data):
            raise UnexpectedEof(0, header.file_size, len(data))
        if header.file_size != len(data):
            raise CorruptData(
                f"Header file size {header.file_size} does not match buffer length {len(data)}"
            )
        if header.pio_offset % 4:
            raise CorruptData(f"Root list offset 0x{header.pio_offset:X} is not 4-byte aligned")
        return header

    def pack(self) -> bytes:
        return HEADER_STRUCT.pack(
            MAGIC,
            self.version,
            self.flags,
            self.file_size,
            self.pio_version,
            self.pio_offset,
            self.list_count,
            self.object_count,
            self.param_count,
            self.data_section_size,
            self.string_section_size,
            self.unknown_section_size,
        )

    def __str__(self):
        return (f"AAMP v{self.version} (flags=0x{self.flags:X}, size={self.file_size}, "
                f"lists={self.list_count}, objects={self.object_count}, params={self.param_count})")


# =============================================================================
# Parser
# =============================================================================

class AampParser:
    """Offset-driven reader for one AAMP buffer"""

    def __init__(self, data: bytes):
        self.data = bytes(data)
        self.header: Optional[AampHeader] = None
        self._seen_lists: Set[int] = set()
        self._seen_objects: Set[int] = set()
        self._seen_params: Set[int] = set()

    # -------------------------------------------------------------------------
    # Low-level reads
    # -------------------------------------------------------------------------

    def _check_range(self, offset: int, size: int) -> None:
        if offset < 0 or offset > len(self.data):
            raise CorruptData(f"Offset 0x{offset:X} is outside the buffer ({len(self.data)} bytes)")
        if offset + size > len(self.data):
            raise UnexpectedEof(offset, size, len(self.data))

    def _unpack(self, fmt: struct.Struct, offset: int) -> tuple:
        self._check_range(offset, fmt.size)
        return fmt.unpack_from(self.data, offset)

    def _read_cstring(self, offset: int, limit: Optional[int] = None) -> str:
        self._check_range(offset, 1)
        end = self.data.find(b"\0", offset, limit)
        if end < 0 and limit is not None:
            raise CorruptData(f"String at 0x{offset:X} is not terminated before 0x{limit:X}")
        if end < 0:
            raise UnexpectedEof(offset, len(self.data) - offset + 1, len(self.data))
        return self._decode_text(self.data[offset:end], offset)

    def _decode_text(self, raw: bytes, offset: int) -> str:
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise CorruptData(f"Invalid UTF-8 string at 0x{offset:X}") from exc

    # -------------------------------------------------------------------------
    # Tree
    # -------------------------------------------------------------------------

    def parse(self) -> ParameterIO:
        self.header = AampHeader.parse(self.data)
        logger.debug("Parsing %s", self.header)

        root_offset = HEADER_SIZE + self.header.pio_offset
        pio_type = self._read_cstring(HEADER_SIZE, root_offset)
        root = self._parse_list(root_offset, 0)

        found = (len(self._seen_lists), len(self._seen_objects), len(self._seen_params))
        expected = (self.header.list_count, self.header.object_count, self.header.param_count)
        if found != expected:
            logger.debug("Header counts %s differ from parsed counts %s", expected, found)

        return ParameterIO(pio_type, self.header.pio_version, root)

    def _claim(self, seen: Set[int], offset: int, kind: str) -> None:
        # Every table entry belongs to exactly one parent
        if offset in seen:
            raise CorruptData(f"{kind} entry at 0x{offset:X} is referenced twice")
        seen.add(offset)

    def _parse_list(self, offset: int, depth: int) -> ParameterList:
        if depth > MAX_DEPTH:
            raise CorruptData(f"Lists nested deeper than {MAX_DEPTH} levels")
        self._claim(self._seen_lists, offset, "List")
        _, lists_rel, num_lists, objs_rel, num_objs = self._unpack(LIST_STRUCT, offset)

        plist = ParameterList()
        objs_base = offset + objs_rel * 4
        for i in range(num_objs):
            entry = objs_base + OBJECT_STRUCT.size * i
            name_hash = self._unpack(U32_STRUCT, entry)[0]
            plist.add_object(Name(name_hash), self._parse_object(entry))

        lists_base = offset + lists_rel * 4
        for i in range(num_lists):
            entry = lists_base + LIST_STRUCT.size * i
            name_hash = self._unpack(U32_STRUCT, entry)[0]
            plist.add_list(Name(name_hash), self._parse_list(entry, depth + 1))
        return plist

    def _parse_object(self, offset: int) -> ParameterObject:
        self._claim(self._seen_objects, offset, "Object")
        _, params_rel, num_params = self._unpack(OBJECT_STRUCT, offset)

        obj = ParameterObject()
        params_base = offset + params_rel * 4
        for i in range(num_params):
            entry = params_base + PARAM_STRUCT.size * i
            self._claim(self._seen_params, entry, "Parameter")
            name_hash, packed = self._unpack(PARAM_STRUCT, entry)
            data_offset = entry + (packed & 0xFFFFFF) * 4
            type_byte = packed >> 24
            try:
                ptype = ParameterType(type_byte)
            except ValueError:
                raise UnknownTypeTag(type_byte, entry) from None
            obj.add(Name(name_hash), self._parse_value(ptype, data_offset))
        return obj

    # -------------------------------------------------------------------------
    # Values
    # -------------------------------------------------------------------------

    def _parse_value(self, ptype: ParameterType, offset: int) -> Value:
        info = TYPE_INFO[ptype]
        kind = info.kind

        if ptype in SCALAR_STRUCTS:
            fields = self._unpack(SCALAR_STRUCTS[ptype], offset)
            if kind == "bool":
                return Value(ptype, fields[0] != 0)
            if kind == "vector":
                return Value(ptype, fields)
            return Value(ptype, fields[0])

        if kind == "string":
            text = self._read_cstring(offset)
            if info.size and len(text.encode("utf-8")) + 1 > info.size:
                raise CorruptData(f"{ptype.name} at 0x{offset:X} exceeds {info.size} bytes")
            return Value(ptype, text)

        if kind == "curve":
            curves = []
            for i in range(info.size):
                fields = self._unpack(CURVE_STRUCT, offset + CURVE_STRUCT.size * i)
                curves.append(Curve(fields[0], fields[1], fields[2:]))
            return Value(ptype, curves)

        # Buffers: element count is stored just before the data
        if offset < 4:
            raise CorruptData(f"Buffer at 0x{offset:X} has no room for its element count")
        count = self._unpack(U32_STRUCT, offset - 4)[0]

        if info.element == "string":
            self._check_range(offset, count * info.size)
            items = []
            for i in range(count):
                slot = offset + info.size * i
                end = self.data.find(b"\0", slot, slot + info.size)
                if end < 0:
                    raise CorruptData(f"{ptype.name} slot at 0x{slot:X} is not NUL-terminated")
                items.append(self._decode_text(self.data[slot:end], slot))
            return Value(ptype, items)

        code, size = BUFFER_ELEMENTS[info.element]
        self._check_range(offset, count * size)
        items = struct.unpack_from(f"<{count}{code}", self.data, offset)
        return Value(ptype, items)


# =============================================================================
# Public API
# =============================================================================

def decode_binary(data: bytes) -> ParameterIO:
    """
    Decode an AAMP v2 buffer into a ParameterIO tree.

    Args:
        data: Complete file contents

    Returns:
        ParameterIO with children in on-disk table order

    Raises:
        FormatError: The buffer is not a valid AAMP v2 archive
    """
    try:
        return AampParser(data).parse()
    except AampError:
        raise
    except (struct.error, ValueError) as exc:
        raise CorruptData(f"Malformed AAMP data: {exc}") from exc


def count_nodes(pio: ParameterIO) -> dict:
    """Count lists, objects and parameters in a tree (root list included)"""
    counts = {'lists': 0, 'objects': 0, 'params': 0}
    for _, node in pio.walk():
        if isinstance(node, ParameterList):
            counts['lists'] += 1
        else:
            counts['objects'] += 1
            counts['params'] += len(node)
    return counts


def print_tree(pio: ParameterIO, names: Optional[NameTable] = None):
    """Print the list/object hierarchy with parameter types"""
    def label(name: Name) -> str:
        if name.string is None and names is not None:
            return names.get(name.hash) or str(name)
        return str(name)

    for path, node in pio.walk():
        indent = "  " * (len(path) - 1)
        if isinstance(node, ParameterList):
            print(f"{indent}{label(path[-1])}/")
        else:
            print(f"{indent}{label(path[-1])} ({len(node)} params)")
            for param in node:
                print(f"{indent}  {label(param.name)}: {param.value.type.name}")


# =============================================================================
# Main
# =============================================================================

def main():
    """Main entry point"""
    parser = argparse.ArgumentParser(
        description='AAMP v2 Parameter Archive Parser',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python aamp_parser.py Enemy_Lizalfos.bxml
  python aamp_parser.py Enemy_Lizalfos.bxml --tree --names botw_names.txt
"""
    )

    parser.add_argument('file', help='Path to AAMP file to parse')
    parser.add_argument('--tree', '-t', action='store_true',
                        help='Print the full list/object hierarchy')
    parser.add_argument('--names', '-n', action='append', default=[],
                        help='Name dictionary file (one name per line), may be repeated')
    parser.add_argument('--verbose', '-v', action='store_true',
                        help='Enable debug logging')

    args = parser.parse_args()
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO,
                        format='%(levelname)s %(name)s: %(message)s')

    with open(args.file, 'rb') as f:
        data = f.read()

    try:
        pio = decode_binary(data)
    except AampError as e:
        print(f"ERROR: {e}")
        return 1

    counts = count_nodes(pio)
    print("=" * 60)
    print(f"AAMP: {args.file}")
    print("=" * 60)
    print(f"  Size:     {len(data)} bytes")
    print(f"  Type:     {pio.pio_type}")
    print(f"  Version:  {pio.version}")
    print(f"  Lists:    {counts['lists']}")
    print(f"  Objects:  {counts['objects']}")
    print(f"  Params:   {counts['params']}")

    if args.tree:
        names = NameTable.load(*args.names) if args.names else None
        print()
        print_tree(pio, names)

    return 0


if __name__ == "__main__":
    sys.exit(main())
