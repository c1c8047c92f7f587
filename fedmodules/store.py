"""Key prefixes, write batches and an in-memory key-value database."""

from __future__ import annotations

import copy
from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Any, Hashable, Iterator, Optional, Tuple, Union


class DbPrefix(IntEnum):
    """First element of every database key, grouping entries by kind."""

    COIN_NONCE = 0x10
    PROPOSED_PARTIAL_SIG = 0x11
    RECEIVED_PARTIAL_SIG = 0x12
    OUTPUT_OUTCOME = 0x13
    MINT_AUDIT_ITEM = 0x14

    CONTRACT = 0x40
    OFFER = 0x41
    PROPOSE_DECRYPTION_SHARE = 0x42
    AGREED_DECRYPTION_SHARE = 0x43
    CONTRACT_UPDATE = 0x44
    LIGHTNING_GATEWAY = 0x45


Key = Tuple[Hashable, ...]


class KeyExistsError(KeyError):
    """Raised when a batch inserts a new entry under a key already present."""

    def __init__(self, key: Key) -> None:
        self.key = key
        super().__init__(key)

    def __str__(self) -> str:
        return f"key already exists: {self.key!r}"


def _check_key(key: Any) -> Key:
    if not isinstance(key, tuple) or not key or not isinstance(key[0], DbPrefix):
        raise TypeError(f"database keys are tuples starting with a DbPrefix, got {key!r}")
    return key


class _OpKind(Enum):
    INSERT = "insert"
    INSERT_NEW = "insert_new"
    DELETE = "delete"


@dataclass(frozen=True)
class _Op:
    kind: _OpKind
    key: Key
    value: Any = None


class Batch:
    """An ordered list of writes applied atomically by MemoryDatabase.apply_batch."""

    def __init__(self) -> None:
        self._ops: list[_Op] = []

    def insert(self, key: Key, value: Any) -> None:
        """Write value under key, replacing any existing entry."""
        self._ops.append(_Op(_OpKind.INSERT, _check_key(key), value))

    def insert_new(self, key: Key, value: Any) -> None:
        """Write value under key; applying fails if the key already exists."""
        self._ops.append(_Op(_OpKind.INSERT_NEW, _check_key(key), value))

    def delete(self, key: Key) -> None:
        """Remove the entry under key if there is one."""
        self._ops.append(_Op(_OpKind.DELETE, _check_key(key)))

    def extend(self, other: "Batch") -> None:
        """Append all writes of another batch."""
        self._ops.extend(other._ops)

    def __len__(self) -> int:
        return len(self._ops)

    def __bool__(self) -> bool:
        return bool(self._ops)


class MemoryDatabase:
    """A dictionary-backed key-value store.

    Values are copied on the way in and out, so callers never share state with the store.
    Iteration follows insertion order.
    """

    def __init__(self) -> None:
        self._data: dict[Key, Any] = {}

    def get(self, key: Key) -> Optional[Any]:
        value = self._data.get(_check_key(key))
        return copy.deepcopy(value)

    def insert(self, key: Key, value: Any) -> Optional[Any]:
        """Store value under key and return the previous value, if any."""
        key = _check_key(key)
        previous = self._data.get(key)
        self._data[key] = copy.deepcopy(value)
        return previous

    def delete(self, key: Key) -> Optional[Any]:
        """Remove key and return its value, if any."""
        return self._data.pop(_check_key(key), None)

    def find_by_prefix(self, prefix: Union[DbPrefix, Key]) -> Iterator[Tuple[Key, Any]]:
        """Yield (key, value) for every key starting with the given prefix."""
        if isinstance(prefix, DbPrefix):
            prefix = (prefix,)
        prefix = _check_key(prefix)
        length = len(prefix)
        matches = [
            (key, value)
            for key, value in self._data.items()
            if len(key) >= length and key[:length] == prefix
        ]
        for key, value in matches:
            yield key, copy.deepcopy(value)

    def apply_batch(self, batch: Batch) -> None:
        """Apply all writes of batch, or none of them if one fails."""
        staged = dict(self._data)
        for op in batch._ops:
            if op.kind is _OpKind.INSERT:
                staged[op.key] = copy.deepcopy(op.value)
            elif op.kind is _OpKind.INSERT_NEW:
                if op.key in staged:
                    raise KeyExistsError(op.key)
                staged[op.key] = copy.deepcopy(op.value)
            else:
                staged.pop(op.key, None)
        self._data = staged

    def __contains__(self, key: object) -> bool:
        return key in self._data

    def __len__(self) -> int:
        return len(self._data)