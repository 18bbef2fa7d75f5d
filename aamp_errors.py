"""
AAMP Error Types
================

Every failure raised by the AAMP codecs derives from AampError, so callers
can catch a single type around any decode/encode/convert call.

Hierarchy:
---------
    AampError
    +-- FormatError         malformed binary input or tree structure
    |   +-- InvalidMagic
    |   +-- UnsupportedVersion
    |   +-- UnexpectedEof
    |   +-- CorruptData
    |   +-- UnknownTypeTag
    |   +-- DuplicateKey
    +-- ValidationError     values that cannot be written
    |   +-- StringTooLong
    |   +-- EmbeddedNul
    |   +-- BufferLengthMismatch
    |   +-- TypeMismatch
    |   +-- ValueOutOfRange
    +-- TextError           malformed YAML documents
        +-- ParseError
        +-- UnknownTag
        +-- TagValueMismatch
"""

from typing import Optional


class AampError(Exception):
    """Base class for all AAMP errors"""


# =============================================================================
# Binary format errors
# =============================================================================

class FormatError(AampError):
    """The binary data (or a tree being built) is structurally invalid"""


class InvalidMagic(FormatError):
    def __init__(self, magic: bytes):
        super().__init__(f"Invalid magic {magic!r}, expected b'AAMP'")
        self.magic = magic


class UnsupportedVersion(FormatError):
    def __init__(self, version: int):
        super().__init__(f"Unsupported AAMP version {version}, only version 2 is supported")
        self.version = version


class UnexpectedEof(FormatError):
    def __init__(self, offset: int, size: int, length: int):
        super().__init__(
            f"Unexpected end of data reading {size} bytes at 0x{offset:X} "
            f"(buffer is {length} bytes)"
        )
        self.offset = offset
        self.size = size
        self.length = length


class CorruptData(FormatError):
    """Bad offset, bad size or otherwise inconsistent binary data"""


class UnknownTypeTag(FormatError):
    def __init__(self, type_byte: int, offset: int):
        super().__init__(f"Unknown parameter type 0x{type_byte:02X} at 0x{offset:X}")
        self.type_byte = type_byte
        self.offset = offset


class DuplicateKey(FormatError):
    def __init__(self, kind: str, name_hash: int, name: Optional[str] = None):
        label = f"'{name}' (0x{name_hash:08X})" if name is not None else f"0x{name_hash:08X}"
        super().__init__(f"Duplicate {kind} key {label}")
        self.kind = kind
        self.name_hash = name_hash
        self.name = name


# =============================================================================
# Value validation errors
# =============================================================================

class ValidationError(AampError):
    """A value cannot be represented in the AAMP format"""


class StringTooLong(ValidationError):
    def __init__(self, type_name: str, length: int, width: int):
        super().__init__(
            f"{type_name} value needs {length + 1} bytes including terminator, "
            f"maximum is {width}"
        )
        self.type_name = type_name
        self.length = length
        self.width = width


class EmbeddedNul(ValidationError):
    def __init__(self, type_name: str, text: str):
        super().__init__(f"{type_name} value {text!r} contains a NUL character")
        self.type_name = type_name
        self.text = text


class BufferLengthMismatch(ValidationError):
    def __init__(self, type_name: str, declared: int, actual: int):
        super().__init__(
            f"{type_name} declares {declared} elements but holds {actual}"
        )
        self.type_name = type_name
        self.declared = declared
        self.actual = actual


class TypeMismatch(ValidationError):
    def __init__(self, expected: str, actual: str):
        super().__init__(f"Expected a {expected} value, found {actual}")
        self.expected = expected
        self.actual = actual


class ValueOutOfRange(ValidationError):
    """An integer payload does not fit the width of its type"""


# =============================================================================
# Text (YAML) errors
# =============================================================================

class TextError(AampError):
    """The YAML representation is invalid"""


class ParseError(TextError):
    def __init__(self, message: str, line: Optional[int] = None, column: Optional[int] = None):
        if line is not None:
            message = f"{message} (line {line + 1}, column {(column or 0) + 1})"
        super().__init__(message)
        self.line = line
        self.column = column


class UnknownTag(TextError):
    def __init__(self, tag: Optional[str], where: str):
        super().__init__(f"Unknown or missing tag {tag!r} for {where}")
        self.tag = tag


class TagValueMismatch(TextError):
    def __init__(self, tag: str, message: str):
        super().__init__(f"{tag}: {message}")
        self.tag = tag
