#!/usr/bin/env python3
"""
AAMP v2 Binary Serializer
=========================

Encodes a ParameterIO tree into an AAMP version 2 buffer.

Output Layout:
-------------
    0x00        48-byte header
    0x30        ParameterIO type string, NUL-terminated, padded to 4
    lists       12-byte list entries: root first, then every list's
                children as one contiguous block, depth first
    objects     8-byte object entries, one block per list in list order
    params      8-byte parameter entries, one block per object
    data        non-string values in parameter order, each padded to 4
    strings     string values, NUL-terminated, padded to 4, deduplicated

Within each block entries are sorted by ascending hash, so a tree always
encodes to the same bytes regardless of insertion order. Table offsets are
only known once every section is sized, so entries are written after the
layout pass (backpatching the relative offsets).
"""

import logging
import struct
from typing import Dict, List, Tuple

from aamp_errors import UnsupportedVersion, ValueOutOfRange
from aamp_names import ROOT_HASH
from aamp_parser import (
    BUFFER_ELEMENTS,
    CURVE_STRUCT,
    FLAG_LITTLE_ENDIAN,
    FLAG_UTF8,
    HEADER_SIZE,
    LIST_STRUCT,
    OBJECT_STRUCT,
    PARAM_STRUCT,
    SCALAR_STRUCTS,
    U32_STRUCT,
    AampHeader,
)
from aamp_types import (
    AAMP_VERSION,
    MAX_DEPTH,
    Parameter,
    ParameterIO,
    ParameterList,
    ParameterObject,
    Value,
    check_text,
)

logger = logging.getLogger(__name__)

U16_MAX = 0xFFFF
U24_MAX = 0xFFFFFF


def align(value: int, alignment: int = 4) -> int:
    """Round value up to a multiple of alignment"""
    return (value + alignment - 1) & ~(alignment - 1)


def pad(buffer: bytearray, alignment: int = 4) -> None:
    """Zero-pad a buffer to a multiple of alignment"""
    buffer.extend(b"\0" * (align(len(buffer), alignment) - len(buffer)))


def _by_hash(entries):
    return sorted(entries, key=lambda entry: entry[0].hash)


def _rel_offset(target: int, origin: int, limit: int, what: str) -> int:
    rel = (target - origin) // 4
    if rel > limit:
        raise ValueOutOfRange(f"{what} offset 0x{target - origin:X} exceeds the format limit")
    return rel


def _count(value: int, what: str) -> int:
    if value > U16_MAX:
        raise ValueOutOfRange(f"Too many {what} in one node ({value})")
    return value


def pack_value(value: Value) -> bytes:
    """
    Pack a non-string value as it appears in the data section.

    Buffers include their leading u32 element count.
    """
    info = value.info
    if value.type in SCALAR_STRUCTS:
        fmt = SCALAR_STRUCTS[value.type]
        if info.kind == "bool":
            return fmt.pack(1 if value.data else 0)
        if info.kind == "vector":
            return fmt.pack(*value.data)
        return fmt.pack(value.data)

    if info.kind == "curve":
        return b"".join(CURVE_STRUCT.pack(c.a, c.b, *c.floats) for c in value.data)

    out = bytearray(U32_STRUCT.pack(len(value.data)))
    if info.element == "string":
        for item in value.data:
            raw = item.encode("utf-8")
            out.extend(raw + b"\0" * (info.size - len(raw)))
    else:
        code, _ = BUFFER_ELEMENTS[info.element]
        out.extend(struct.pack(f"<{len(value.data)}{code}", *value.data))
    return bytes(out)


class AampWriter:
    """Two-pass AAMP writer: lay out the tables, then emit bytes"""

    def __init__(self, pio: ParameterIO):
        self.pio = pio
        self.lists: List[Tuple[int, ParameterList]] = []
        self.objects: List[Tuple[int, ParameterObject]] = []
        self.params: List[Parameter] = []
        # index of a node's first child entry in the next table
        self.list_children: Dict[int, int] = {}
        self.list_objects: Dict[int, int] = {}
        self.object_params: Dict[int, int] = {}

    def validate(self) -> None:
        if self.pio.format_version != AAMP_VERSION:
            raise UnsupportedVersion(self.pio.format_version)
        check_text("ParameterIO type", self.pio.pio_type)
        for _, node in self.pio.walk():
            if isinstance(node, ParameterObject):
                for param in node:
                    param.value.validate()

    def layout(self) -> None:
        """Assign every list, object and parameter its table index"""
        self.lists.append((ROOT_HASH, self.pio.root))
        stack = [(0, 0)]
        while stack:
            index, depth = stack.pop()
            children = _by_hash(self.lists[index][1].lists())
            if children and depth + 1 > MAX_DEPTH:
                raise ValueOutOfRange(f"Lists nested deeper than {MAX_DEPTH} levels")
            start = len(self.lists)
            self.list_children[index] = start
            self.lists.extend((name.hash, child) for name, child in children)
            stack.extend((i, depth + 1) for i in reversed(range(start, start + len(children))))

        for index, (_, plist) in enumerate(self.lists):
            self.list_objects[index] = len(self.objects)
            self.objects.extend((name.hash, obj) for name, obj in _by_hash(plist.objects()))

        for index, (_, obj) in enumerate(self.objects):
            self.object_params[index] = len(self.params)
            self.params.extend(sorted(obj, key=lambda p: p.name.hash))

    def write(self) -> bytes:
        self.validate()
        self.layout()

        pio_type = self.pio.pio_type.encode("utf-8") + b"\0"
        lists_base = HEADER_SIZE + align(len(pio_type))
        objects_base = lists_base + LIST_STRUCT.size * len(self.lists)
        params_base = objects_base + OBJECT_STRUCT.size * len(self.objects)
        data_base = params_base + PARAM_STRUCT.size * len(self.params)

        # Data and string sections; remember where each value landed
        data = bytearray()
        strings = bytearray()
        string_offsets: Dict[str, int] = {}
        value_offsets: List[int] = []
        for param in self.params:
            value = param.value
            if value.info.kind == "string":
                value_offsets.append(-1)
                continue
            start = len(data)
            data.extend(pack_value(value))
            pad(data)
            if value.info.kind == "buffer":
                start += U32_STRUCT.size
            value_offsets.append(data_base + start)

        strings_base = data_base + len(data)
        for index, param in enumerate(self.params):
            value = param.value
            if value.info.kind != "string":
                continue
            if value.data not in string_offsets:
                string_offsets[value.data] = strings_base + len(strings)
                strings.extend(value.data.encode("utf-8") + b"\0")
                pad(strings)
            value_offsets[index] = string_offsets[value.data]

        out = bytearray(strings_base + len(strings))
        out[HEADER_SIZE:HEADER_SIZE + len(pio_type)] = pio_type

        for index, (name_hash, plist) in enumerate(self.lists):
            entry = lists_base + LIST_STRUCT.size * index
            num_lists = _count(plist.list_count, "lists")
            num_objs = _count(plist.object_count, "objects")
            lists_rel = 0
            if num_lists:
                target = lists_base + LIST_STRUCT.size * self.list_children[index]
                lists_rel = _rel_offset(target, entry, U16_MAX, "List")
            objs_rel = 0
            if num_objs:
                target = objects_base + OBJECT_STRUCT.size * self.list_objects[index]
                objs_rel = _rel_offset(target, entry, U16_MAX, "Object")
            LIST_STRUCT.pack_into(out, entry, name_hash, lists_rel, num_lists, objs_rel, num_objs)

        for index, (name_hash, obj) in enumerate(self.objects):
            entry = objects_base + OBJECT_STRUCT.size * index
            num_params = _count(len(obj), "parameters")
            params_rel = 0
            if num_params:
                target = params_base + PARAM_STRUCT.size * self.object_params[index]
                params_rel = _rel_offset(target, entry, U16_MAX, "Parameter")
            OBJECT_STRUCT.pack_into(out, entry, name_hash, params_rel, num_params)

        for index, param in enumerate(self.params):
            entry = params_base + PARAM_STRUCT.size * index
            data_rel = _rel_offset(value_offsets[index], entry, U24_MAX, "Data")
            PARAM_STRUCT.pack_into(out, entry, param.name.hash, data_rel | (param.value.type << 24))

        out[data_base:data_base + len(data)] = data
        out[strings_base:] = strings

        header = AampHeader(
            version=AAMP_VERSION,
            flags=FLAG_LITTLE_ENDIAN | FLAG_UTF8,
            file_size=len(out),
            pio_version=self.pio.version,
            pio_offset=lists_base - HEADER_SIZE,
            list_count=len(self.lists),
            object_count=len(self.objects),
            param_count=len(self.params),
            data_section_size=len(data),
            string_section_size=len(strings),
        )
        out[:HEADER_SIZE] = header.pack()
        logger.debug("Wrote %s", header)
        return bytes(out)


def encode_binary(pio: ParameterIO) -> bytes:
    """
    Encode a ParameterIO tree as an AAMP v2 buffer.

    Args:
        pio: Tree to encode

    Returns:
        Complete file contents

    Raises:
        ValidationError: A value cannot be written (string too long,
            buffer count mismatch, archive exceeds offset limits)
        UnsupportedVersion: pio.format_version is not 2
    """
    return AampWriter(pio).write()
