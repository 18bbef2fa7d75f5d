"""
AAMP Parameter Tree
===================

In-memory model of an AAMP v2 parameter archive.

    ParameterIO                 root document (type string, version)
    +-- ParameterList           param_root
        +-- ParameterList ...   child lists, keyed by Name
        +-- ParameterObject     child objects, keyed by Name
            +-- Parameter       Name + Value

Keys are Names: a CRC-32 hash, optionally paired with the string it was
computed from. Only the hash identifies a key; the string is kept for
display and is never required.

Each node exclusively owns its children. Children of the same kind must
have distinct hashes within their parent; a second insert with an existing
hash raises DuplicateKey instead of overwriting.

Value Types:
-----------
| Tag | Type             | Payload                               |
|-----|------------------|---------------------------------------|
| 0   | BOOL             | bool                                  |
| 1   | F32              | float (single precision)              |
| 2   | INT              | int (signed 32-bit)                   |
| 3-5 | VEC2/VEC3/VEC4   | tuple of 2/3/4 floats                 |
| 6   | COLOR            | tuple of 4 floats                     |
| 7-8 | STRING32/64      | str, max 31/63 UTF-8 bytes            |
| 9-12| CURVE1..CURVE4   | tuple of 1..4 Curve                   |
| 13  | BUFFER_INT       | tuple of int (signed 32-bit)          |
| 14  | BUFFER_F32       | tuple of float                        |
| 15  | STRING256        | str, max 255 UTF-8 bytes              |
| 16  | QUAT             | tuple of 4 floats                     |
| 17  | U32              | int (unsigned 32-bit)                 |
| 18  | BUFFER_U32       | tuple of int (unsigned 32-bit)        |
| 19  | BUFFER_BINARY    | tuple of int (bytes)                  |
| 20  | STRING_REF       | str, unbounded                        |
| 21  | BUFFER_STRING32  | tuple of str, 32-byte slots           |
| 22  | BUFFER_STRING64  | tuple of str, 64-byte slots           |
| 23  | BUFFER_STRING256 | tuple of str, 256-byte slots          |
"""

import math
import struct
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Dict, Iterable, Iterator, Optional, Tuple, Union

from aamp_errors import (
    BufferLengthMismatch,
    DuplicateKey,
    EmbeddedNul,
    StringTooLong,
    TypeMismatch,
    ValueOutOfRange,
)
from aamp_names import ROOT_NAME, hash_name

AAMP_VERSION = 2

# Floats per curve, after the two u32 header words
CURVE_FLOAT_COUNT = 30

INT32_MIN = -0x80000000
INT32_MAX = 0x7FFFFFFF
UINT32_MAX = 0xFFFFFFFF

# Lists nested deeper than this are rejected by both codecs
MAX_DEPTH = 512


# =============================================================================
# Parameter types
# =============================================================================

class ParameterType(IntEnum):
    """On-disk parameter type byte"""
    BOOL = 0
    F32 = 1
    INT = 2
    VEC2 = 3
    VEC3 = 4
    VEC4 = 5
    COLOR = 6
    STRING32 = 7
    STRING64 = 8
    CURVE1 = 9
    CURVE2 = 10
    CURVE3 = 11
    CURVE4 = 12
    BUFFER_INT = 13
    BUFFER_F32 = 14
    STRING256 = 15
    QUAT = 16
    U32 = 17
    BUFFER_U32 = 18
    BUFFER_BINARY = 19
    STRING_REF = 20
    BUFFER_STRING32 = 21
    BUFFER_STRING64 = 22
    BUFFER_STRING256 = 23


@dataclass(frozen=True)
class TypeInfo:
    """Shape of a parameter type"""
    kind: str       # bool, int, u32, float, vector, curve, string, buffer
    size: int = 0   # vector/curve element count, string width (0 = unbounded)
    element: str = ""  # buffer element kind: int, u32, u8, float, string


TYPE_INFO: Dict[ParameterType, TypeInfo] = {
    ParameterType.BOOL: TypeInfo("bool"),
    ParameterType.F32: TypeInfo("float"),
    ParameterType.INT: TypeInfo("int"),
    ParameterType.VEC2: TypeInfo("vector", 2),
    ParameterType.VEC3: TypeInfo("vector", 3),
    ParameterType.VEC4: TypeInfo("vector", 4),
    ParameterType.COLOR: TypeInfo("vector", 4),
    ParameterType.STRING32: TypeInfo("string", 32),
    ParameterType.STRING64: TypeInfo("string", 64),
    ParameterType.CURVE1: TypeInfo("curve", 1),
    ParameterType.CURVE2: TypeInfo("curve", 2),
    ParameterType.CURVE3: TypeInfo("curve", 3),
    ParameterType.CURVE4: TypeInfo("curve", 4),
    ParameterType.BUFFER_INT: TypeInfo("buffer", element="int"),
    ParameterType.BUFFER_F32: TypeInfo("buffer", element="float"),
    ParameterType.STRING256: TypeInfo("string", 256),
    ParameterType.QUAT: TypeInfo("vector", 4),
    ParameterType.U32: TypeInfo("u32"),
    ParameterType.BUFFER_U32: TypeInfo("buffer", element="u32"),
    ParameterType.BUFFER_BINARY: TypeInfo("buffer", element="u8"),
    ParameterType.STRING_REF: TypeInfo("string"),
    ParameterType.BUFFER_STRING32: TypeInfo("buffer", 32, "string"),
    ParameterType.BUFFER_STRING64: TypeInfo("buffer", 64, "string"),
    ParameterType.BUFFER_STRING256: TypeInfo("buffer", 256, "string"),
}


def to_f32(value: Any) -> float:
    """Round a number to the nearest single precision float"""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise TypeMismatch("number", type(value).__name__)
    try:
        return struct.unpack("<f", struct.pack("<f", value))[0]
    except (OverflowError, struct.error) as exc:
        raise ValueOutOfRange(f"{value!r} does not fit a 32-bit float") from exc


def _check_int(value: Any, low: int, high: int, label: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeMismatch(label, type(value).__name__)
    if not low <= value <= high:
        raise ValueOutOfRange(f"{value} is out of range for {label}")
    return value


def _check_str(value: Any) -> str:
    if not isinstance(value, str):
        raise TypeMismatch("string", type(value).__name__)
    return value


# Stands in for every NaN so that NaNs compare equal regardless of payload
_NAN_KEY = b"nan"


def float_key(values) -> Tuple[bytes, ...]:
    """Bit patterns of single precision floats, for equality and hashing"""
    return tuple(_NAN_KEY if math.isnan(x) else struct.pack("<f", x) for x in values)


# =============================================================================
# Curve
# =============================================================================

@dataclass(frozen=True)
class Curve:
    """One curve: two header words followed by 30 control floats"""
    a: int
    b: int
    floats: Tuple[float, ...]

    def __post_init__(self):
        _check_int(self.a, 0, UINT32_MAX, "curve header")
        _check_int(self.b, 0, UINT32_MAX, "curve header")
        floats = tuple(to_f32(f) for f in self.floats)
        if len(floats) != CURVE_FLOAT_COUNT:
            raise ValueOutOfRange(
                f"Curve needs exactly {CURVE_FLOAT_COUNT} floats, got {len(floats)}"
            )
        object.__setattr__(self, "floats", floats)

    def __eq__(self, other):
        if isinstance(other, Curve):
            return (self.a, self.b, float_key(self.floats)) == (other.a, other.b, float_key(other.floats))
        return NotImplemented

    def __hash__(self):
        return hash((self.a, self.b, float_key(self.floats)))


# =============================================================================
# Value
# =============================================================================

@dataclass(frozen=True)
class Value:
    """
    A typed parameter value.

    The payload is normalized on construction (floats rounded to single
    precision, sequences converted to tuples). For buffer types, count is the
    declared element count; it defaults to the number of elements supplied and
    is checked against it by validate().
    """
    type: ParameterType
    data: Any
    count: Optional[int] = None

    def __post_init__(self):
        ptype = ParameterType(self.type)
        object.__setattr__(self, "type", ptype)
        info = TYPE_INFO[ptype]
        object.__setattr__(self, "data", _normalize(ptype, info, self.data))
        if info.kind == "buffer":
            if self.count is None:
                object.__setattr__(self, "count", len(self.data))
            else:
                _check_int(self.count, 0, UINT32_MAX, "buffer count")
        elif self.count is not None:
            raise TypeMismatch("buffer", ptype.name)

    @property
    def info(self) -> TypeInfo:
        return TYPE_INFO[self.type]

    def _key(self):
        # Floats compare by bit pattern: -0.0 differs from 0.0, NaN equals NaN
        info = self.info
        if info.kind == "float":
            return float_key((self.data,))
        if info.kind == "vector" or info.element == "float":
            return float_key(self.data)
        return self.data

    def __eq__(self, other):
        if isinstance(other, Value):
            return (self.type, self.count, self._key()) == (other.type, other.count, other._key())
        return NotImplemented

    def __hash__(self):
        return hash((self.type, self.count, self._key()))

    def validate(self) -> None:
        """Raise if the value cannot be written as-is"""
        info = self.info
        if info.kind == "string":
            check_text(self.type.name, self.data, info.size)
        elif info.kind == "buffer":
            if self.count != len(self.data):
                raise BufferLengthMismatch(self.type.name, self.count, len(self.data))
            if info.element == "string":
                for item in self.data:
                    check_text(self.type.name, item, info.size)

    # -------------------------------------------------------------------------
    # Accessors
    # -------------------------------------------------------------------------

    def _expect(self, label: str, *kinds: str):
        if self.info.kind not in kinds:
            raise TypeMismatch(label, self.type.name)
        return self.data

    def as_bool(self) -> bool:
        return self._expect("bool", "bool")

    def as_int(self) -> int:
        return self._expect("int", "int")

    def as_u32(self) -> int:
        return self._expect("u32", "u32")

    def as_float(self) -> float:
        return self._expect("float", "float")

    def as_vector(self) -> Tuple[float, ...]:
        return self._expect("vector", "vector")

    def as_string(self) -> str:
        return self._expect("string", "string")

    def as_curves(self) -> Tuple[Curve, ...]:
        return self._expect("curve", "curve")

    def as_buffer(self) -> Tuple[Any, ...]:
        return self._expect("buffer", "buffer")


def check_text(type_name: str, text: str, width: int = 0) -> None:
    """Raise if text cannot be stored NUL-terminated in width bytes (0 = unbounded)"""
    if "\0" in text:
        raise EmbeddedNul(type_name, text)
    length = len(text.encode("utf-8"))
    if width and length + 1 > width:
        raise StringTooLong(type_name, length, width)


def _normalize(ptype: ParameterType, info: TypeInfo, data: Any) -> Any:
    kind = info.kind
    if kind == "bool":
        if not isinstance(data, bool):
            raise TypeMismatch("bool", type(data).__name__)
        return data
    if kind == "int":
        return _check_int(data, INT32_MIN, INT32_MAX, ptype.name)
    if kind == "u32":
        return _check_int(data, 0, UINT32_MAX, ptype.name)
    if kind == "float":
        return to_f32(data)
    if kind == "string":
        return _check_str(data)
    if isinstance(data, (str, dict)) or not isinstance(data, Iterable):
        raise TypeMismatch("sequence", type(data).__name__)
    items = tuple(data)
    if kind == "vector":
        if len(items) != info.size:
            raise TypeMismatch(f"{info.size}-component vector", f"{len(items)} components")
        return tuple(to_f32(x) for x in items)
    if kind == "curve":
        if len(items) != info.size:
            raise TypeMismatch(f"{info.size} curves", f"{len(items)} curves")
        for item in items:
            if not isinstance(item, Curve):
                raise TypeMismatch("Curve", type(item).__name__)
        return items
    # buffer
    element = info.element
    if element == "int":
        return tuple(_check_int(x, INT32_MIN, INT32_MAX, ptype.name) for x in items)
    if element == "u32":
        return tuple(_check_int(x, 0, UINT32_MAX, ptype.name) for x in items)
    if element == "u8":
        return tuple(_check_int(x, 0, 0xFF, ptype.name) for x in items)
    if element == "float":
        return tuple(to_f32(x) for x in items)
    return tuple(_check_str(x) for x in items)


# =============================================================================
# Names
# =============================================================================

class Name:
    """
    A key: 32-bit hash plus the original string when it is known.

    Equality and hashing only consider the hash.
    """
    __slots__ = ("hash", "string")

    def __init__(self, key: Union[str, int], string: Optional[str] = None):
        if isinstance(key, str):
            if string is not None and string != key:
                raise ValueError(f"Conflicting name strings {key!r} and {string!r}")
            self.hash = hash_name(key)
            self.string: Optional[str] = key
            return
        name_hash = _check_int(key, 0, UINT32_MAX, "name hash")
        if string is not None and hash_name(string) != name_hash:
            raise ValueError(f"Name {string!r} does not hash to 0x{name_hash:08X}")
        self.hash = name_hash
        self.string = string

    @classmethod
    def of(cls, key: Union["Name", str, int]) -> "Name":
        if isinstance(key, Name):
            return key
        return cls(key)

    def __eq__(self, other):
        if isinstance(other, Name):
            return self.hash == other.hash
        return NotImplemented

    def __hash__(self):
        return hash(self.hash)

    def __str__(self):
        return self.string if self.string is not None else f"0x{self.hash:08X}"

    def __repr__(self):
        if self.string is not None:
            return f"Name({self.string!r})"
        return f"Name(0x{self.hash:08X})"


Key = Union[Name, str, int]


def key_hash(key: Key) -> int:
    if isinstance(key, Name):
        return key.hash
    if isinstance(key, str):
        return hash_name(key)
    return _check_int(key, 0, UINT32_MAX, "name hash")


# =============================================================================
# Tree nodes
# =============================================================================

@dataclass(frozen=True)
class Parameter:
    name: Name
    value: Value


class ParameterObject:
    """Ordered, hash-unique collection of Parameters"""

    def __init__(self, params: Iterable[Tuple[Key, Value]] = ()):
        self._params: Dict[int, Parameter] = {}
        for key, value in params:
            self.add(key, value)

    def add(self, key: Key, value: Value) -> Parameter:
        """Insert a new parameter, raising DuplicateKey if the hash is taken"""
        name = Name.of(key)
        if name.hash in self._params:
            raise DuplicateKey("parameter", name.hash, name.string)
        return self.set(name, value)

    def set(self, key: Key, value: Value) -> Parameter:
        """Insert or replace a parameter"""
        if not isinstance(value, Value):
            raise TypeMismatch("Value", type(value).__name__)
        param = Parameter(Name.of(key), value)
        self._params[param.name.hash] = param
        return param

    def get(self, key: Key) -> Optional[Parameter]:
        return self._params.get(key_hash(key))

    def remove(self, key: Key) -> Parameter:
        return self._params.pop(key_hash(key))

    def __getitem__(self, key: Key) -> Value:
        return self._params[key_hash(key)].value

    def __contains__(self, key: Key) -> bool:
        return key_hash(key) in self._params

    def __iter__(self) -> Iterator[Parameter]:
        return iter(self._params.values())

    def __len__(self) -> int:
        return len(self._params)

    def __eq__(self, other):
        if isinstance(other, ParameterObject):
            return self._params == other._params
        return NotImplemented

    __hash__ = None

    def __repr__(self):
        return f"ParameterObject({list(self._params.values())!r})"


LIST = "list"
OBJECT = "object"

Node = Union["ParameterList", ParameterObject]


class ParameterList:
    """
    Ordered collection of child lists and child objects.

    Lists and objects are separate namespaces: a list and an object may
    share a hash. One insertion order is kept across both kinds.
    """

    def __init__(self):
        self._children: Dict[Tuple[str, int], Tuple[Name, Node]] = {}

    # -------------------------------------------------------------------------
    # Generic child handling
    # -------------------------------------------------------------------------

    def _add(self, kind: str, key: Key, node: Node) -> Node:
        name = Name.of(key)
        if (kind, name.hash) in self._children:
            raise DuplicateKey(kind, name.hash, name.string)
        self._children[(kind, name.hash)] = (name, node)
        return node

    def _set(self, kind: str, key: Key, node: Node) -> Node:
        name = Name.of(key)
        self._children[(kind, name.hash)] = (name, node)
        return node

    def _get(self, kind: str, key: Key) -> Optional[Node]:
        entry = self._children.get((kind, key_hash(key)))
        return entry[1] if entry is not None else None

    def _remove(self, kind: str, key: Key) -> Node:
        return self._children.pop((kind, key_hash(key)))[1]

    def _iter(self, kind: str) -> Iterator[Tuple[Name, Node]]:
        for (child_kind, _), entry in self._children.items():
            if child_kind == kind:
                yield entry

    # -------------------------------------------------------------------------
    # Lists
    # -------------------------------------------------------------------------

    def add_list(self, key: Key, plist: Optional["ParameterList"] = None) -> "ParameterList":
        if plist is None:
            plist = ParameterList()
        elif not isinstance(plist, ParameterList):
            raise TypeMismatch("ParameterList", type(plist).__name__)
        return self._add(LIST, key, plist)

    def set_list(self, key: Key, plist: "ParameterList") -> "ParameterList":
        if not isinstance(plist, ParameterList):
            raise TypeMismatch("ParameterList", type(plist).__name__)
        return self._set(LIST, key, plist)

    def get_list(self, key: Key) -> Optional["ParameterList"]:
        return self._get(LIST, key)

    def remove_list(self, key: Key) -> "ParameterList":
        return self._remove(LIST, key)

    def lists(self) -> Iterator[Tuple[Name, "ParameterList"]]:
        return self._iter(LIST)

    @property
    def list_count(self) -> int:
        return sum(1 for kind, _ in self._children if kind == LIST)

    # -------------------------------------------------------------------------
    # Objects
    # -------------------------------------------------------------------------

    def add_object(self, key: Key, obj: Optional[ParameterObject] = None) -> ParameterObject:
        if obj is None:
            obj = ParameterObject()
        elif not isinstance(obj, ParameterObject):
            raise TypeMismatch("ParameterObject", type(obj).__name__)
        return self._add(OBJECT, key, obj)

    def set_object(self, key: Key, obj: ParameterObject) -> ParameterObject:
        if not isinstance(obj, ParameterObject):
            raise TypeMismatch("ParameterObject", type(obj).__name__)
        return self._set(OBJECT, key, obj)

    def get_object(self, key: Key) -> Optional[ParameterObject]:
        return self._get(OBJECT, key)

    def remove_object(self, key: Key) -> ParameterObject:
        return self._remove(OBJECT, key)

    def objects(self) -> Iterator[Tuple[Name, ParameterObject]]:
        return self._iter(OBJECT)

    @property
    def object_count(self) -> int:
        return sum(1 for kind, _ in self._children if kind == OBJECT)

    # -------------------------------------------------------------------------

    def children(self) -> Iterator[Tuple[str, Name, Node]]:
        """Yield (kind, name, node) for every child in insertion order"""
        for (kind, _), (name, node) in self._children.items():
            yield kind, name, node

    def __len__(self) -> int:
        return len(self._children)

    def __eq__(self, other):
        if not isinstance(other, ParameterList):
            return NotImplemented
        # Iterative: nesting can exceed the recursion limit
        stack = [(self, other)]
        while stack:
            a, b = stack.pop()
            if a._children.keys() != b._children.keys():
                return False
            for key, (_, node) in a._children.items():
                other_node = b._children[key][1]
                if isinstance(node, ParameterList):
                    stack.append((node, other_node))
                elif node != other_node:
                    return False
        return True

    __hash__ = None

    def __repr__(self):
        return (f"ParameterList(lists={[str(n) for n, _ in self.lists()]}, "
                f"objects={[str(n) for n, _ in self.objects()]})")


class ParameterIO:
    """Root of an AAMP document"""

    def __init__(self, pio_type: str = "xml", version: int = 0,
                 root: Optional[ParameterList] = None, format_version: int = AAMP_VERSION):
        self.pio_type = _check_str(pio_type)
        self.version = _check_int(version, 0, UINT32_MAX, "ParameterIO version")
        self.root = root if root is not None else ParameterList()
        self.format_version = format_version

    @property
    def root_name(self) -> Name:
        return Name(ROOT_NAME)

    def get_list(self, key: Key) -> Optional[ParameterList]:
        return self.root.get_list(key)

    def get_object(self, key: Key) -> Optional[ParameterObject]:
        return self.root.get_object(key)

    def walk(self) -> Iterator[Tuple[Tuple[Name, ...], Node]]:
        """Yield (path, node) for every list and object, depth first"""
        stack = [((self.root_name,), self.root)]
        while stack:
            path, node = stack.pop()
            yield path, node
            if isinstance(node, ParameterList):
                children = [(path + (name,), child) for _, name, child in node.children()]
                stack.extend(reversed(children))

    def __eq__(self, other):
        if isinstance(other, ParameterIO):
            return (self.pio_type == other.pio_type
                    and self.version == other.version
                    and self.format_version == other.format_version
                    and self.root == other.root)
        return NotImplemented

    __hash__ = None

    def __repr__(self):
        return f"ParameterIO(type={self.pio_type!r}, version={self.version}, root={self.root!r})"
