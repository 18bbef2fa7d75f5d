"""
AAMP Name Hashing and Name Tables
=================================

AAMP archives never store key names, only a CRC-32 of each name. The same
hash function is used by the binary codec, the YAML codec and the tree, so a
tree read from binary and the same tree read from YAML compare equal.

Known names can be recovered for display through a NameTable, a read-only
hash -> string dictionary supplied by the caller. A table may also carry
numbered-name templates ("Item_{:02}") used to guess indexed names such as
"Child_03" that cannot all be listed up front.

Reference hashes:
----------------
| String       | Hash       |
|--------------|------------|
| ""           | 0x00000000 |
| "param_root" | 0xA4F6CB6C |
| "hello"      | 0x3610A686 |
"""

import logging
import zlib
from typing import Dict, Iterable, Iterator, List, Optional

logger = logging.getLogger(__name__)

# Name of the root list of every ParameterIO
ROOT_NAME = "param_root"

# Suffixes stripped from a plural parent name when guessing child names
PLURAL_SUFFIXES = ("s", "es", "List")


def hash_name(name: str) -> int:
    """
    Compute the AAMP key hash of a name.

    Args:
        name: Key name

    Returns:
        CRC-32 (IEEE) of the UTF-8 encoded name as an unsigned 32-bit int
    """
    return zlib.crc32(name.encode("utf-8")) & 0xFFFFFFFF


ROOT_HASH = hash_name(ROOT_NAME)


def _indexed_candidates(prefix: str, index: int) -> List[str]:
    return [
        f"{prefix}{index}",
        f"{prefix}_{index}",
        f"{prefix}{index:02}",
        f"{prefix}_{index:02}",
        f"{prefix}{index:03}",
        f"{prefix}_{index:03}",
    ]


class NameTable:
    """
    Read-only hash -> name dictionary.

    Built once from an iterable of names; lookups never modify it, so one
    table can be shared by any number of concurrent encodes.
    """

    def __init__(self, names: Iterable[str] = (), numbered_names: Iterable[str] = ()):
        self._table: Dict[int, str] = {}
        for name in names:
            self._table.setdefault(hash_name(name), name)
        self._numbered: List[str] = list(numbered_names)

    @classmethod
    def from_text(cls, text: str, numbered_text: str = "") -> "NameTable":
        """Build a table from newline separated name lists"""
        names = [line.strip() for line in text.splitlines() if line.strip()]
        numbered = [line.strip() for line in numbered_text.splitlines() if line.strip()]
        return cls(names, numbered)

    @classmethod
    def load(cls, *paths: str, numbered_paths: Iterable[str] = ()) -> "NameTable":
        """
        Load a table from one or more name list files.

        Args:
            paths: Files with one name per line
            numbered_paths: Files with one numbered-name template per line

        Returns:
            NameTable containing every name from every file
        """
        names: List[str] = []
        for path in paths:
            with open(path, "r", encoding="utf-8") as f:
                names.extend(line.strip() for line in f if line.strip())
        numbered: List[str] = []
        for path in numbered_paths:
            with open(path, "r", encoding="utf-8") as f:
                numbered.extend(line.strip() for line in f if line.strip())
        table = cls(names, numbered)
        logger.debug("Loaded %d names and %d numbered templates", len(table), len(numbered))
        return table

    def extended(self, names: Iterable[str]) -> "NameTable":
        """
        Return a new table with extra names added.

        Existing entries keep priority; this table is left unchanged.
        """
        table = NameTable(numbered_names=self._numbered)
        table._table = dict(self._table)
        for name in names:
            table._table.setdefault(hash_name(name), name)
        return table

    def get(self, name_hash: int) -> Optional[str]:
        return self._table.get(name_hash)

    def __contains__(self, name_hash: int) -> bool:
        return name_hash in self._table

    def __len__(self) -> int:
        return len(self._table)

    def __iter__(self) -> Iterator[int]:
        return iter(self._table)

    def guess(self, name_hash: int, parent: Optional[str], index: int) -> Optional[str]:
        """
        Try to recover an indexed child name from its parent's name.

        A candidate is only returned when its hash matches name_hash.

        Args:
            name_hash: Hash of the unknown child
            parent: Name of the parent node, if known
            index: Position of the child within its parent

        Returns:
            The matching name, or None
        """
        if parent is not None:
            prefixes = [parent]
            if parent == "Children":
                prefixes.append("Child")
            for suffix in PLURAL_SUFFIXES:
                if parent.endswith(suffix) and len(parent) > len(suffix):
                    prefixes.append(parent[:-len(suffix)])
            for prefix in prefixes:
                for i in (index, index + 1):
                    for candidate in _indexed_candidates(prefix, i):
                        if hash_name(candidate) == name_hash:
                            return candidate
        return self._guess_numbered(name_hash, index)

    def _guess_numbered(self, name_hash: int, index: int) -> Optional[str]:
        # Later templates win when several match
        found = None
        for template in self._numbered:
            for i in range(index + 2):
                try:
                    candidate = template.format(i)
                except (IndexError, KeyError, ValueError):
                    # Template is not a single-index format string
                    break
                if hash_name(candidate) == name_hash:
                    found = candidate
        return found
