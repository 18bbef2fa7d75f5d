"""AAMP binary decode/encode."""

import struct

import pytest

from aamp_errors import (
    BufferLengthMismatch,
    CorruptData,
    DuplicateKey,
    EmbeddedNul,
    FormatError,
    InvalidMagic,
    StringTooLong,
    UnexpectedEof,
    UnknownTypeTag,
    UnsupportedVersion,
    ValueOutOfRange,
)
from aamp_names import ROOT_HASH, hash_name
from aamp_parser import HEADER_STRUCT, LIST_STRUCT, OBJECT_STRUCT, PARAM_STRUCT, decode_binary
from aamp_serializer import encode_binary
from aamp_types import MAX_DEPTH, Curve, Name, ParameterIO, ParameterType, Value
from conftest import build_nested


def _header(data: bytes) -> dict:
    fields = HEADER_STRUCT.unpack_from(data, 0)
    keys = ("magic", "version", "flags", "file_size", "pio_version", "pio_offset",
            "lists", "objects", "params", "data_size", "string_size", "unknown_size")
    return dict(zip(keys, fields))


def _table_offsets(data: bytes):
    header = _header(data)
    lists = 0x30 + header["pio_offset"]
    objects = lists + LIST_STRUCT.size * header["lists"]
    params = objects + OBJECT_STRUCT.size * header["objects"]
    return lists, objects, params


def _single_object(*params) -> ParameterIO:
    pio = ParameterIO()
    obj = pio.root.add_object("Obj")
    for key, value in params:
        obj.add(key, value)
    return pio


# -----------------------------------------------------------------------------
# Round trips
# -----------------------------------------------------------------------------

def test_round_trip_preserves_tree(sample_pio) -> None:
    data = encode_binary(sample_pio)
    decoded = decode_binary(data)
    assert decoded == sample_pio
    assert decoded.pio_type == "xml"
    assert decoded.version == 10


def test_reencoding_decoded_tree_is_byte_identical(sample_pio) -> None:
    data = encode_binary(sample_pio)
    assert encode_binary(decode_binary(data)) == data


def test_decoded_names_are_hash_only(sample_pio) -> None:
    decoded = decode_binary(encode_binary(sample_pio))
    content = decoded.get_object("TestContent")
    param = content.get("Bool")
    assert param.name.string is None
    assert param.name.hash == hash_name("Bool")
    assert content[Name(0xDEADBEEF)].as_float() == 1.5


def test_values_survive_round_trip(sample_pio) -> None:
    decoded = decode_binary(encode_binary(sample_pio))
    content = decoded.get_object("TestContent")
    assert content["Bool"].as_bool() is True
    assert content["False"].as_bool() is False
    assert content["U32"].as_u32() == 0xDEADBEEF
    assert content["Str256"].as_string() == "ünïcode ✓"
    assert content["EmptyStr"].as_string() == ""
    assert content["BufBin"].as_buffer() == (0, 127, 255)
    assert content["BufEmpty"].as_buffer() == ()
    assert content["BufStr32"].as_buffer() == ("a", "", "bc")
    assert content["Curve2"].as_curves()[1].a == 3
    children = decoded.get_list("Children")
    assert children.get_list("Child_2").get_object("Params")["Index"].as_int() == 2


def test_nan_and_signed_zero_round_trip() -> None:
    nan = float("nan")
    pio = _single_object(
        ("F", Value(ParameterType.F32, nan)),
        ("V", Value(ParameterType.VEC3, (nan, 0.0, -0.0))),
        ("B", Value(ParameterType.BUFFER_F32, [nan, 1.0])),
        ("C", Value(ParameterType.CURVE1, [Curve(0, 0, [nan] * 30)])),
    )
    assert decode_binary(encode_binary(pio)) == pio


def test_any_nonzero_bool_word_is_true() -> None:
    data = bytearray(encode_binary(_single_object(("B", Value(ParameterType.BOOL, False)))))
    _, _, params = _table_offsets(data)
    _, packed = PARAM_STRUCT.unpack_from(data, params)
    value_offset = params + (packed & 0xFFFFFF) * 4
    struct.pack_into("<I", data, value_offset, 0x100)

    decoded = decode_binary(bytes(data))

    assert decoded.get_object("Obj")["B"].as_bool() is True
    reencoded = encode_binary(decoded)
    assert struct.unpack_from("<I", reencoded, value_offset)[0] == 1


def test_nan_payloads_compare_equal() -> None:
    data = bytearray(encode_binary(_single_object(("F", Value(ParameterType.F32, 1.0)))))
    _, _, params = _table_offsets(data)
    _, packed = PARAM_STRUCT.unpack_from(data, params)
    struct.pack_into("<I", data, params + (packed & 0xFFFFFF) * 4, 0x7FC00001)

    decoded = decode_binary(bytes(data))

    assert decoded == _single_object(("F", Value(ParameterType.F32, float("nan"))))


def test_encoding_is_independent_of_insertion_order() -> None:
    a = _single_object(("X", Value(ParameterType.INT, 1)), ("Y", Value(ParameterType.INT, 2)))
    b = _single_object(("Y", Value(ParameterType.INT, 2)), ("X", Value(ParameterType.INT, 1)))
    assert encode_binary(a) == encode_binary(b)


# -----------------------------------------------------------------------------
# Layout
# -----------------------------------------------------------------------------

def test_empty_document_layout() -> None:
    data = encode_binary(ParameterIO())
    header = _header(data)
    assert header["magic"] == b"AAMP"
    assert header["version"] == 2
    assert header["flags"] == 3
    assert header["file_size"] == len(data) == 0x30 + 4 + 12
    assert header["pio_offset"] == 4
    assert (header["lists"], header["objects"], header["params"]) == (1, 0, 0)
    assert data[0x30:0x34] == b"xml\0"
    assert LIST_STRUCT.unpack_from(data, 0x34) == (ROOT_HASH, 0, 0, 0, 0)


def test_header_counts_and_alignment(sample_pio) -> None:
    data = encode_binary(sample_pio)
    header = _header(data)
    assert header["file_size"] == len(data)
    assert len(data) % 4 == 0
    # root, Children, Child_0..2, Empty
    assert header["lists"] == 6
    # TestContent, EmptyObject, three Params objects
    assert header["objects"] == 5
    assert header["params"] == len(sample_pio.get_object("TestContent")) + 6
    assert header["unknown_size"] == 0


def test_tables_are_sorted_by_hash() -> None:
    names = ["Zeta", "Alpha", "Mu", "Beta", "Omega"]
    pio = _single_object(*[(n, Value(ParameterType.INT, i)) for i, n in enumerate(names)])
    data = encode_binary(pio)
    _, _, params = _table_offsets(data)
    hashes = [PARAM_STRUCT.unpack_from(data, params + 8 * i)[0] for i in range(len(names))]
    assert hashes == sorted(hash_name(n) for n in names)


def test_identical_strings_are_stored_once() -> None:
    pio = _single_object(
        ("A", Value(ParameterType.STRING_REF, "shared")),
        ("B", Value(ParameterType.STRING64, "shared")),
    )
    data = encode_binary(pio)
    assert _header(data)["string_size"] == 8
    assert data.count(b"shared\0") == 1


def test_buffer_offset_points_past_count() -> None:
    pio = _single_object(("Buf", Value(ParameterType.BUFFER_U32, [7, 8])))
    data = encode_binary(pio)
    _, _, params = _table_offsets(data)
    _, packed = PARAM_STRUCT.unpack_from(data, params)
    assert packed >> 24 == ParameterType.BUFFER_U32
    value_offset = params + (packed & 0xFFFFFF) * 4
    assert struct.unpack_from("<III", data, value_offset - 4) == (2, 7, 8)


# -----------------------------------------------------------------------------
# Encode errors
# -----------------------------------------------------------------------------

def test_encode_rejects_long_fixed_string() -> None:
    pio = _single_object(("S", Value(ParameterType.STRING32, "x" * 32)))
    with pytest.raises(StringTooLong):
        encode_binary(pio)


def test_encode_rejects_buffer_count_mismatch() -> None:
    pio = _single_object(("B", Value(ParameterType.BUFFER_F32, [1.0, 2.0, 3.0], count=5)))
    with pytest.raises(BufferLengthMismatch):
        encode_binary(pio)


def test_encode_rejects_other_format_versions() -> None:
    pio = ParameterIO(format_version=1)
    with pytest.raises(UnsupportedVersion):
        encode_binary(pio)


def test_encode_rejects_embedded_nul() -> None:
    with pytest.raises(EmbeddedNul):
        encode_binary(_single_object(("S", Value(ParameterType.STRING_REF, "ab\0cd"))))
    with pytest.raises(EmbeddedNul):
        encode_binary(_single_object(("B", Value(ParameterType.BUFFER_STRING32, ["a\0"]))))
    with pytest.raises(EmbeddedNul):
        encode_binary(ParameterIO("x\0y"))


def test_nesting_limit() -> None:
    deepest = build_nested(MAX_DEPTH)
    assert decode_binary(encode_binary(deepest)) == deepest
    with pytest.raises(ValueOutOfRange):
        encode_binary(build_nested(MAX_DEPTH + 1))


# -----------------------------------------------------------------------------
# Decode errors
# -----------------------------------------------------------------------------

def test_truncation_at_any_offset_is_a_format_error(sample_pio) -> None:
    data = encode_binary(sample_pio)
    for length in range(len(data)):
        with pytest.raises(FormatError):
            decode_binary(data[:length])


def test_short_buffer_is_unexpected_eof() -> None:
    with pytest.raises(UnexpectedEof):
        decode_binary(b"AAMP\x02\0\0\0")


def test_invalid_magic() -> None:
    data = encode_binary(ParameterIO())
    with pytest.raises(InvalidMagic) as info:
        decode_binary(b"BAMP" + data[4:])
    assert info.value.magic == b"BAMP"


def test_unsupported_version() -> None:
    data = bytearray(encode_binary(ParameterIO()))
    struct.pack_into("<I", data, 4, 1)
    with pytest.raises(UnsupportedVersion) as info:
        decode_binary(bytes(data))
    assert info.value.version == 1


def test_file_size_mismatch_is_corrupt() -> None:
    data = encode_binary(ParameterIO())
    with pytest.raises(CorruptData):
        decode_binary(data + b"\0\0\0\0")


def test_big_endian_flag_is_rejected() -> None:
    data = bytearray(encode_binary(ParameterIO()))
    struct.pack_into("<I", data, 8, 2)
    with pytest.raises(CorruptData):
        decode_binary(bytes(data))


def test_unknown_type_byte() -> None:
    data = bytearray(encode_binary(_single_object(("A", Value(ParameterType.INT, 1)))))
    _, _, params = _table_offsets(data)
    data[params + 7] = 0x40
    with pytest.raises(UnknownTypeTag) as info:
        decode_binary(bytes(data))
    assert info.value.type_byte == 0x40


def test_duplicate_sibling_hashes_are_rejected() -> None:
    pio = _single_object(("A", Value(ParameterType.INT, 1)), ("B", Value(ParameterType.INT, 2)))
    data = bytearray(encode_binary(pio))
    _, _, params = _table_offsets(data)
    data[params + 8:params + 12] = data[params:params + 4]
    with pytest.raises(DuplicateKey):
        decode_binary(bytes(data))


def test_self_referencing_list_is_corrupt() -> None:
    data = bytearray(encode_binary(ParameterIO()))
    lists, _, _ = _table_offsets(data)
    # Root claims one child list located at its own entry
    LIST_STRUCT.pack_into(data, lists, ROOT_HASH, 0, 1, 0, 0)
    with pytest.raises(CorruptData):
        decode_binary(bytes(data))


def test_data_offset_past_end_is_a_format_error() -> None:
    data = bytearray(encode_binary(_single_object(("A", Value(ParameterType.INT, 1)))))
    _, _, params = _table_offsets(data)
    PARAM_STRUCT.pack_into(data, params, hash_name("A"), 0xFFFFF | (ParameterType.INT << 24))
    with pytest.raises(FormatError):
        decode_binary(bytes(data))


def test_over_width_fixed_string_is_corrupt() -> None:
    data = bytearray(encode_binary(_single_object(("S", Value(ParameterType.STRING_REF, "y" * 40)))))
    _, _, params = _table_offsets(data)
    name_hash, packed = PARAM_STRUCT.unpack_from(data, params)
    PARAM_STRUCT.pack_into(data, params, name_hash, (packed & 0xFFFFFF) | (ParameterType.STRING32 << 24))
    with pytest.raises(CorruptData):
        decode_binary(bytes(data))
