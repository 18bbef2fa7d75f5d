"""Name hashing and NameTable lookups."""

import zlib

import pytest

from aamp_names import ROOT_HASH, NameTable, hash_name


@pytest.mark.parametrize(
    "name, expected",
    [
        ("", 0x00000000),
        ("param_root", 0xA4F6CB6C),
        ("hello", 0x3610A686),
        ("The quick brown fox jumps over the lazy dog", 0x414FA339),
    ],
)
def test_hash_name_matches_reference_crc32(name, expected) -> None:
    assert hash_name(name) == expected


def test_root_hash_is_param_root() -> None:
    assert ROOT_HASH == 2767637356


def test_known_collision_pair_hashes_equal() -> None:
    assert hash_name("plumless") == hash_name("buckeroo") == 0x4DDB0C25


def test_hash_name_uses_utf8() -> None:
    assert hash_name("ü") == zlib.crc32(b"\xc3\xbc")
    assert hash_name("ü") != hash_name("u")


def test_name_table_lookup() -> None:
    table = NameTable(["Alpha", "Beta"])
    assert table.get(hash_name("Alpha")) == "Alpha"
    assert table.get(hash_name("Gamma")) is None
    assert hash_name("Beta") in table
    assert len(table) == 2
    assert set(table) == {hash_name("Alpha"), hash_name("Beta")}


def test_name_table_keeps_first_of_colliding_names() -> None:
    table = NameTable(["plumless", "buckeroo"])
    assert len(table) == 1
    assert table.get(0x4DDB0C25) == "plumless"


def test_name_table_from_text_skips_blank_lines() -> None:
    table = NameTable.from_text("Alpha\n\n  Beta  \n")
    assert table.get(hash_name("Beta")) == "Beta"
    assert len(table) == 2


def test_name_table_load_reads_all_files(tmp_path) -> None:
    first = tmp_path / "names1.txt"
    second = tmp_path / "names2.txt"
    numbered = tmp_path / "numbered.txt"
    first.write_text("Alpha\nBeta\n", encoding="utf-8")
    second.write_text("Gamma\n", encoding="utf-8")
    numbered.write_text("AI_{}\n", encoding="utf-8")

    table = NameTable.load(str(first), str(second), numbered_paths=[str(numbered)])

    assert len(table) == 3
    assert table.get(hash_name("Gamma")) == "Gamma"
    assert table.guess(hash_name("AI_2"), None, 1) == "AI_2"


def test_guess_child_of_children_list() -> None:
    table = NameTable()
    assert table.guess(hash_name("Child_03"), "Children", 3) == "Child_03"


def test_guess_strips_plural_suffix_and_tries_one_based_index() -> None:
    table = NameTable()
    assert table.guess(hash_name("Item_1"), "Items", 0) == "Item_1"


def test_guess_uses_parent_name_as_prefix() -> None:
    table = NameTable()
    assert table.guess(hash_name("Bone2"), "Bone", 2) == "Bone2"


def test_guess_numbered_templates() -> None:
    table = NameTable(numbered_names=["AI_{}", "Action_{:02}"])
    assert table.guess(hash_name("Action_04"), None, 3) == "Action_04"


def test_guess_ignores_malformed_templates() -> None:
    table = NameTable(numbered_names=["Broken_{name}", "AI_{}"])
    assert table.guess(hash_name("AI_0"), None, 0) == "AI_0"


def test_guess_returns_none_without_match() -> None:
    table = NameTable(numbered_names=["AI_{}"])
    assert table.guess(0xDEADBEEF, "Children", 0) is None


def test_guess_numbered_keeps_last_matching_template() -> None:
    table = NameTable(numbered_names=["plumless", "buckeroo"])
    assert table.guess(0x4DDB0C25, None, 0) == "buckeroo"


def test_extended_table_leaves_original_unchanged() -> None:
    table = NameTable(["plumless"], numbered_names=["AI_{}"])

    extended = table.extended(["Alpha", "buckeroo"])

    assert extended.get(hash_name("Alpha")) == "Alpha"
    assert extended.get(0x4DDB0C25) == "plumless"
    assert extended.guess(hash_name("AI_1"), None, 0) == "AI_1"
    assert hash_name("Alpha") not in table
    assert len(table) == 1
