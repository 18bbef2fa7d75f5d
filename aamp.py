"""
AAMP Parameter Archives
=======================

Public entry points for reading and writing AAMP v2 parameter archives and
their tagged YAML text form.

    from aamp import decode_binary, encode_binary, to_text, from_text

    pio = decode_binary(open("Enemy_Lizalfos.bxml", "rb").read())
    text = to_text(pio, names=NameTable.load("botw_names.txt"))
    assert from_text(text) == pio
"""

from aamp_errors import (
    AampError,
    BufferLengthMismatch,
    CorruptData,
    DuplicateKey,
    EmbeddedNul,
    FormatError,
    InvalidMagic,
    ParseError,
    StringTooLong,
    TagValueMismatch,
    TextError,
    TypeMismatch,
    UnexpectedEof,
    UnknownTag,
    UnknownTypeTag,
    UnsupportedVersion,
    ValidationError,
    ValueOutOfRange,
)
from aamp_names import ROOT_HASH, ROOT_NAME, NameTable, hash_name
from aamp_parser import MAGIC, decode_binary
from aamp_serializer import encode_binary
from aamp_types import (
    MAX_DEPTH,
    Curve,
    Name,
    Parameter,
    ParameterIO,
    ParameterList,
    ParameterObject,
    ParameterType,
    Value,
)
from aamp_yaml import from_text, to_text

__all__ = [
    "AampError",
    "BufferLengthMismatch",
    "CorruptData",
    "Curve",
    "DuplicateKey",
    "EmbeddedNul",
    "FormatError",
    "InvalidMagic",
    "MAGIC",
    "MAX_DEPTH",
    "Name",
    "NameTable",
    "Parameter",
    "ParameterIO",
    "ParameterList",
    "ParameterObject",
    "ParameterType",
    "ParseError",
    "ROOT_HASH",
    "ROOT_NAME",
    "StringTooLong",
    "TagValueMismatch",
    "TextError",
    "TypeMismatch",
    "UnexpectedEof",
    "UnknownTag",
    "UnknownTypeTag",
    "UnsupportedVersion",
    "ValidationError",
    "Value",
    "ValueOutOfRange",
    "decode_binary",
    "encode_binary",
    "from_text",
    "hash_name",
    "to_text",
]
