#!/usr/bin/env python3
"""
AAMP YAML Text Format
=====================

Converts ParameterIO trees to and from a tagged YAML document. Every AAMP
type gets its own tag so a document converts back to exactly the same
binary types.

Document Shape:
--------------
    !io
    version: 0
    type: xml
    param_root: !list
      ObjName: !obj
        IsEnabled: !bool true
        !hash32 3735928559: !f32 1.5
      SubList: !list {}

Keys whose string is unknown are written as `!hash32 <decimal hash>`;
`!hash32 0x...` is also accepted when reading.

Value Tags:
----------
| Tag                           | Type                | YAML shape          |
|-------------------------------|---------------------|---------------------|
| !bool                         | BOOL                | true / false        |
| !s32 / !u32                   | INT / U32           | integer             |
| !f32                          | F32                 | float               |
| !vec2 !vec3 !vec4 !color !quat| vectors             | [x, y, ...]         |
| !curve1 .. !curve4            | CURVE1 .. CURVE4    | 32 numbers / curve  |
| !str32 !str64 !str256 !str    | strings             | string              |
| !buf_int !buf_u32 !buf_bin    | integer buffers     | [n, ...]            |
| !buf_f32                      | BUFFER_F32          | [x, ...]            |
| !buf_str32/64/256             | string buffers      | [s, ...]            |

Untagged plain scalars are accepted on input and typed by YAML resolution
(int -> INT, float -> F32, bool -> BOOL, string -> STRING_REF).

The YAML layer is PyYAML's node graph: yaml.compose() for reading and
yaml.serialize() for writing, so every node keeps its tag.
"""

import logging
import math
import sys
from contextlib import contextmanager
from typing import Iterator, List, Optional, Tuple

import yaml
from yaml.constructor import SafeConstructor
from yaml.nodes import MappingNode, Node, ScalarNode, SequenceNode

from aamp_errors import ParseError, TagValueMismatch, UnknownTag, ValidationError, ValueOutOfRange
from aamp_names import NameTable
from aamp_types import (
    CURVE_FLOAT_COUNT,
    INT32_MAX,
    INT32_MIN,
    MAX_DEPTH,
    TYPE_INFO,
    UINT32_MAX,
    Curve,
    Name,
    ParameterIO,
    ParameterList,
    ParameterObject,
    ParameterType,
    TypeInfo,
    Value,
    check_text,
    to_f32,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Tags
# =============================================================================

STR_TAG = "tag:yaml.org,2002:str"
INT_TAG = "tag:yaml.org,2002:int"
FLOAT_TAG = "tag:yaml.org,2002:float"
BOOL_TAG = "tag:yaml.org,2002:bool"

IO_TAG = "!io"
LIST_TAG = "!list"
OBJ_TAG = "!obj"
HASH_TAG = "!hash32"

VALUE_TAGS = {
    ParameterType.BOOL: "!bool",
    ParameterType.F32: "!f32",
    ParameterType.INT: "!s32",
    ParameterType.U32: "!u32",
    ParameterType.VEC2: "!vec2",
    ParameterType.VEC3: "!vec3",
    ParameterType.VEC4: "!vec4",
    ParameterType.COLOR: "!color",
    ParameterType.QUAT: "!quat",
    ParameterType.CURVE1: "!curve1",
    ParameterType.CURVE2: "!curve2",
    ParameterType.CURVE3: "!curve3",
    ParameterType.CURVE4: "!curve4",
    ParameterType.STRING32: "!str32",
    ParameterType.STRING64: "!str64",
    ParameterType.STRING256: "!str256",
    ParameterType.STRING_REF: "!str",
    ParameterType.BUFFER_INT: "!buf_int",
    ParameterType.BUFFER_F32: "!buf_f32",
    ParameterType.BUFFER_U32: "!buf_u32",
    ParameterType.BUFFER_BINARY: "!buf_bin",
    ParameterType.BUFFER_STRING32: "!buf_str32",
    ParameterType.BUFFER_STRING64: "!buf_str64",
    ParameterType.BUFFER_STRING256: "!buf_str256",
}

TAG_TYPES = {tag: ptype for ptype, tag in VALUE_TAGS.items()}

# Numbers stored per curve in the flat YAML sequence
CURVE_WORDS = 2 + CURVE_FLOAT_COUNT

# Only used for YAML 1.1 scalar conversion (ints, floats, bools)
_scalars = SafeConstructor()

# Python frames used per list level by the composer, serializer and tree code
FRAMES_PER_LEVEL = 4


@contextmanager
def _nesting_headroom() -> Iterator[None]:
    """Raise the recursion limit enough for MAX_DEPTH nested lists, then restore it"""
    previous = sys.getrecursionlimit()
    sys.setrecursionlimit(previous + MAX_DEPTH * FRAMES_PER_LEVEL)
    try:
        yield
    finally:
        sys.setrecursionlimit(previous)


# =============================================================================
# Floats
# =============================================================================

def format_float(value: float) -> str:
    """
    Shortest decimal text that reads back as the same 32-bit float.

    The mantissa always contains a '.', so the text resolves as a YAML float.
    """
    if math.isnan(value):
        return ".nan"
    if math.isinf(value):
        return ".inf" if value > 0 else "-.inf"
    for precision in range(6, 10):
        text = "%.*g" % (precision, value)
        try:
            if to_f32(float(text)) == value:
                break
        except ValueOutOfRange:
            continue
    mantissa, sep, exponent = text.partition("e")
    if "." not in mantissa:
        mantissa += ".0"
    return mantissa + sep + exponent


def parse_float(text: str) -> float:
    """Read a YAML float (including .nan / .inf)"""
    return _scalars.construct_yaml_float(ScalarNode(FLOAT_TAG, text))


def parse_int(text: str) -> int:
    """Read a YAML integer (decimal, 0x hex, 0o octal, 0b binary)"""
    return _scalars.construct_yaml_int(ScalarNode(INT_TAG, text))


# =============================================================================
# Writing
# =============================================================================

class TaggedDumper(yaml.SafeDumper):
    """
    SafeDumper that writes explicitly tagged scalars unquoted.

    The stock emitter quotes any scalar whose tag is not the implicitly
    resolved one, which would turn `!f32 1.5` into `!f32 '1.5'`.
    """

    def choose_scalar_style(self):
        if self.analysis is None:
            self.analysis = self.analyze_scalar(self.event.value)
        tag = self.event.tag
        if (not self.event.style and tag and tag.startswith("!")
                and not self.analysis.empty and not self.analysis.multiline):
            if self.flow_level:
                plain = self.analysis.allow_flow_plain
            else:
                plain = self.analysis.allow_block_plain
            if plain:
                return ""
        return super().choose_scalar_style()


def _float_node(value: float) -> ScalarNode:
    return ScalarNode(FLOAT_TAG, format_float(value))


def _int_node(value: int) -> ScalarNode:
    return ScalarNode(INT_TAG, str(value))


def _seq(tag: str, items: List[Node]) -> SequenceNode:
    return SequenceNode(tag, items, flow_style=True)


def value_node(value: Value) -> Node:
    """Build the tagged YAML node for a parameter value"""
    tag = VALUE_TAGS[value.type]
    info = value.info
    kind = info.kind
    data = value.data

    if kind == "bool":
        return ScalarNode(tag, "true" if data else "false")
    if kind in ("int", "u32"):
        return ScalarNode(tag, str(data))
    if kind == "float":
        return ScalarNode(tag, format_float(data))
    if kind == "string":
        return ScalarNode(tag, data)
    if kind == "vector":
        return _seq(tag, [_float_node(x) for x in data])
    if kind == "curve":
        items: List[Node] = []
        for curve in data:
            items.append(_int_node(curve.a))
            items.append(_int_node(curve.b))
            items.extend(_float_node(f) for f in curve.floats)
        return _seq(tag, items)

    # buffer
    if info.element == "float":
        return _seq(tag, [_float_node(x) for x in data])
    if info.element == "string":
        return _seq(tag, [ScalarNode(STR_TAG, x) for x in data])
    return _seq(tag, [_int_node(x) for x in data])


class TextWriter:
    """Builds the YAML node graph for one ParameterIO"""

    def __init__(self, names: Optional[NameTable] = None, guess_names: bool = False):
        self.names = names
        self.guess_names = guess_names
        if guess_names and names is None:
            self.names = NameTable()
        self.guessed = 0

    def resolve(self, name: Name, parent: Optional[str], index: int) -> Optional[str]:
        """Best known string for a key, or None"""
        if name.string is not None:
            return name.string
        if self.names is None:
            return None
        text = self.names.get(name.hash)
        if text is None and self.guess_names:
            text = self.names.guess(name.hash, parent, index)
            if text is not None:
                self.guessed += 1
        return text

    def key_node(self, name: Name, parent: Optional[str], index: int) -> Tuple[ScalarNode, Optional[str]]:
        text = self.resolve(name, parent, index)
        if text is None:
            return ScalarNode(HASH_TAG, str(name.hash)), None
        return ScalarNode(STR_TAG, text), text

    def list_node(self, plist: ParameterList, name: Optional[str], depth: int = 0) -> MappingNode:
        if depth > MAX_DEPTH:
            raise ValueOutOfRange(f"Lists nested deeper than {MAX_DEPTH} levels")
        pairs = []
        for index, (_, child_name, child) in enumerate(plist.children()):
            key, text = self.key_node(child_name, name, index)
            if isinstance(child, ParameterList):
                pairs.append((key, self.list_node(child, text, depth + 1)))
            else:
                pairs.append((key, self.object_node(child, text)))
        return MappingNode(LIST_TAG, pairs, flow_style=False)

    def object_node(self, obj: ParameterObject, name: Optional[str]) -> MappingNode:
        pairs = []
        for index, param in enumerate(obj):
            key, _ = self.key_node(param.name, name, index)
            pairs.append((key, value_node(param.value)))
        return MappingNode(OBJ_TAG, pairs, flow_style=False)

    def document(self, pio: ParameterIO) -> MappingNode:
        pairs = [
            (ScalarNode(STR_TAG, "version"), _int_node(pio.version)),
            (ScalarNode(STR_TAG, "type"), ScalarNode(STR_TAG, pio.pio_type)),
            (ScalarNode(STR_TAG, "param_root"), self.list_node(pio.root, pio.root_name.string)),
        ]
        return MappingNode(IO_TAG, pairs, flow_style=False)


def string_values(pio: ParameterIO) -> Iterator[str]:
    """Yield every String32/64/256 and StringRef value in the tree"""
    for _, node in pio.walk():
        if isinstance(node, ParameterObject):
            for param in node:
                if param.value.info.kind == "string":
                    yield param.value.data


def to_text(
    pio: ParameterIO,
    names: Optional[NameTable] = None,
    guess_names: bool = False,
    names_from_strings: bool = True,
) -> str:
    """
    Render a ParameterIO tree as tagged YAML.

    Args:
        pio: Tree to render
        names: Optional hash -> name dictionary for keys without a string
        guess_names: Also try to guess indexed names ("Child_03") from the
            parent's name and the numbered templates in names
        names_from_strings: Also name keys after the tree's own string
            values. names itself is not modified.

    Returns:
        YAML document text

    Raises:
        ValidationError: A value cannot be represented (e.g. a buffer whose
            declared count does not match its elements), or lists are nested
            deeper than MAX_DEPTH
    """
    check_text("ParameterIO type", pio.pio_type)
    for _, node in pio.walk():
        if isinstance(node, ParameterObject):
            for param in node:
                param.value.validate()

    if names_from_strings:
        strings = {value for value in string_values(pio) if value}
        if strings:
            names = (names if names is not None else NameTable()).extended(sorted(strings))

    writer = TextWriter(names, guess_names)
    with _nesting_headroom():
        document = writer.document(pio)
        text = yaml.serialize(document, Dumper=TaggedDumper, allow_unicode=True, width=120)
    if writer.guessed:
        logger.debug("Guessed %d key names", writer.guessed)
    return text


# =============================================================================
# Reading
# =============================================================================

def _where(node: Node) -> str:
    mark = node.start_mark
    if mark is None:
        return "node"
    return f"line {mark.line + 1}"


def _fail(message: str, node: Node) -> ParseError:
    mark = node.start_mark
    if mark is None:
        return ParseError(message)
    return ParseError(message, mark.line, mark.column)


def _scalar(node: Node, tag: str) -> str:
    if not isinstance(node, ScalarNode):
        raise TagValueMismatch(tag, f"expected a scalar ({_where(node)})")
    return node.value


def _sequence(node: Node, tag: str, length: Optional[int] = None) -> List[Node]:
    if not isinstance(node, SequenceNode):
        raise TagValueMismatch(tag, f"expected a sequence ({_where(node)})")
    if length is not None and len(node.value) != length:
        raise TagValueMismatch(
            tag, f"expected {length} elements, found {len(node.value)} ({_where(node)})"
        )
    return node.value


def _read_int(node: Node, tag: str) -> int:
    text = _scalar(node, tag)
    try:
        return parse_int(text)
    except (ValueError, IndexError):
        raise TagValueMismatch(tag, f"{text!r} is not an integer ({_where(node)})") from None


def _read_float(node: Node, tag: str) -> float:
    text = _scalar(node, tag)
    try:
        return parse_float(text)
    except (ValueError, IndexError):
        raise TagValueMismatch(tag, f"{text!r} is not a number ({_where(node)})") from None


def _read_bool(node: Node, tag: str) -> bool:
    text = _scalar(node, tag)
    value = _scalars.bool_values.get(text.lower())
    if value is None:
        raise TagValueMismatch(tag, f"{text!r} is not a boolean ({_where(node)})")
    return value


def _read_payload(ptype: ParameterType, info: TypeInfo, node: Node, tag: str):
    kind = info.kind
    if kind == "bool":
        return _read_bool(node, tag)
    if kind in ("int", "u32"):
        return _read_int(node, tag)
    if kind == "float":
        return _read_float(node, tag)
    if kind == "string":
        return _scalar(node, tag)
    if kind == "vector":
        return [_read_float(n, tag) for n in _sequence(node, tag, info.size)]
    if kind == "curve":
        items = _sequence(node, tag, CURVE_WORDS * info.size)
        curves = []
        for start in range(0, len(items), CURVE_WORDS):
            chunk = items[start:start + CURVE_WORDS]
            floats = [_read_float(n, tag) for n in chunk[2:]]
            curves.append(Curve(_read_int(chunk[0], tag), _read_int(chunk[1], tag), floats))
        return curves

    items = _sequence(node, tag)
    if info.element == "float":
        return [_read_float(n, tag) for n in items]
    if info.element == "string":
        return [_scalar(n, tag) for n in items]
    return [_read_int(n, tag) for n in items]


def _infer_value(node: ScalarNode) -> Value:
    # Untagged scalar: type follows the YAML resolved tag
    tag = node.tag
    if tag == BOOL_TAG:
        return Value(ParameterType.BOOL, _read_bool(node, tag))
    if tag == INT_TAG:
        number = _read_int(node, tag)
        if not INT32_MIN <= number <= INT32_MAX:
            raise TagValueMismatch(tag, f"{number} does not fit a signed 32-bit int ({_where(node)})")
        return Value(ParameterType.INT, number)
    if tag == FLOAT_TAG:
        return Value(ParameterType.F32, _read_float(node, tag))
    if tag == STR_TAG:
        return Value(ParameterType.STRING_REF, node.value)
    raise UnknownTag(tag, f"parameter value ({_where(node)})")


def read_value(node: Node) -> Value:
    """Convert a YAML value node into a Value"""
    tag = node.tag
    if not tag.startswith("!"):
        if isinstance(node, ScalarNode):
            value = _infer_value(node)
            value.validate()
            return value
        raise UnknownTag(tag, f"parameter value ({_where(node)})")

    ptype = TAG_TYPES.get(tag)
    if ptype is None:
        raise UnknownTag(tag, f"parameter value ({_where(node)})")
    try:
        value = Value(ptype, _read_payload(ptype, TYPE_INFO[ptype], node, tag))
    except ValidationError as exc:
        raise TagValueMismatch(tag, f"{exc} ({_where(node)})") from exc
    value.validate()
    return value


def read_key(node: Node) -> Name:
    """Convert a mapping key into a Name"""
    if not isinstance(node, ScalarNode):
        raise _fail("Mapping keys must be scalars", node)
    if node.tag == HASH_TAG:
        text = node.value.strip()
        try:
            if text.lower().startswith("0x"):
                name_hash = int(text, 16)
            else:
                name_hash = int(text, 10)
        except ValueError:
            raise TagValueMismatch(HASH_TAG, f"{text!r} is not a hash ({_where(node)})") from None
        if not 0 <= name_hash <= UINT32_MAX:
            raise TagValueMismatch(HASH_TAG, f"{name_hash} does not fit 32 bits ({_where(node)})")
        return Name(name_hash)
    if node.tag.startswith("!"):
        raise UnknownTag(node.tag, f"key ({_where(node)})")
    return Name(node.value)


def read_object(node: MappingNode) -> ParameterObject:
    obj = ParameterObject()
    for key_node, field in node.value:
        obj.add(read_key(key_node), read_value(field))
    return obj


def read_list(node: MappingNode, depth: int = 0) -> ParameterList:
    if depth > MAX_DEPTH:
        raise _fail(f"Lists nested deeper than {MAX_DEPTH} levels", node)
    plist = ParameterList()
    for key_node, child in node.value:
        name = read_key(key_node)
        if child.tag in (LIST_TAG, OBJ_TAG) and not isinstance(child, MappingNode):
            raise TagValueMismatch(child.tag, f"expected a mapping ({_where(child)})")
        if child.tag == LIST_TAG:
            plist.add_list(name, read_list(child, depth + 1))
        elif child.tag == OBJ_TAG:
            plist.add_object(name, read_object(child))
        else:
            raise UnknownTag(child.tag, f"child {name} ({_where(child)})")
    return plist


def from_text(text: str) -> ParameterIO:
    """
    Parse a tagged YAML document into a ParameterIO tree.

    Args:
        text: YAML document as produced by to_text()

    Returns:
        ParameterIO with children in document order

    Raises:
        ParseError: Invalid YAML, the document root is not a valid !io, or
            lists are nested deeper than MAX_DEPTH
        UnknownTag: A node carries an unknown tag (or none where one is needed)
        TagValueMismatch: A value does not have the shape its tag requires
        DuplicateKey: Two siblings of the same kind share a hash
    """
    try:
        with _nesting_headroom():
            return _read_document(text)
    except RecursionError:
        raise ParseError(f"Document nested too deeply (limit {MAX_DEPTH} lists)") from None


def _read_document(text: str) -> ParameterIO:
    try:
        root = yaml.compose(text, Loader=yaml.SafeLoader)
    except yaml.MarkedYAMLError as exc:
        mark = exc.problem_mark or exc.context_mark
        message = exc.problem or exc.context or "Invalid YAML"
        if mark is None:
            raise ParseError(message) from exc
        raise ParseError(message, mark.line, mark.column) from exc
    except yaml.YAMLError as exc:
        raise ParseError(str(exc)) from exc

    if root is None:
        raise ParseError("Document is empty")
    if not isinstance(root, MappingNode) or root.tag != IO_TAG:
        raise _fail(f"Document root must be an {IO_TAG} mapping", root)

    fields = {}
    for key_node, field in root.value:
        if not isinstance(key_node, ScalarNode):
            raise _fail("Mapping keys must be scalars", key_node)
        if key_node.value in fields:
            raise _fail(f"Duplicate key {key_node.value!r}", key_node)
        fields[key_node.value] = field

    for required in ("version", "type", "param_root"):
        if required not in fields:
            raise _fail(f"Missing {required!r} in {IO_TAG} document", root)
    unexpected = sorted(set(fields) - {"version", "type", "param_root"})
    if unexpected:
        raise _fail(f"Unexpected keys {unexpected} in {IO_TAG} document", root)

    version_node = fields["version"]
    if not isinstance(version_node, ScalarNode):
        raise _fail("'version' must be an integer", version_node)
    try:
        version = parse_int(version_node.value)
    except (ValueError, IndexError):
        raise _fail(f"'version' must be an integer, found {version_node.value!r}", version_node) from None
    if not 0 <= version <= UINT32_MAX:
        raise _fail(f"'version' {version} does not fit 32 bits", version_node)

    type_node = fields["type"]
    if not isinstance(type_node, ScalarNode):
        raise _fail("'type' must be a string", type_node)
    check_text("ParameterIO type", type_node.value)

    param_root = fields["param_root"]
    if param_root.tag != LIST_TAG:
        raise UnknownTag(param_root.tag, f"param_root ({_where(param_root)})")
    if not isinstance(param_root, MappingNode):
        raise TagValueMismatch(LIST_TAG, f"expected a mapping ({_where(param_root)})")

    pio = ParameterIO(type_node.value, version, read_list(param_root))
    logger.debug("Read YAML document: type=%s version=%d", pio.pio_type, pio.version)
    return pio
