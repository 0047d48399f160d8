# election_ledger/database/hash_index.py

from typing import Any, Iterator, List, Tuple

from election_ledger.errors import ResourceError

# Open-addressing hash map from unsigned 64-bit keys to record handles.
# Linear probing; deleted slots become tombstones so probe chains stay intact.

MASK64 = 0xFFFFFFFFFFFFFFFF
MASK32 = 0xFFFFFFFF

EMPTY = 0
OCCUPIED = 1
TOMBSTONE = 2

FNV_OFFSET = 1469598103934665603
FNV_PRIME = 1099511628211


def mix64(x: int) -> int:
    """64-bit avalanche finalizer (murmur3 fmix64)."""
    x ^= x >> 33
    x = (x * 0xff51afd7ed558ccd) & MASK64
    x ^= x >> 33
    x = (x * 0xc4ceb9fe1a85ec53) & MASK64
    x ^= x >> 33
    return x


def email_key(email: str) -> int:
    """FNV-1a over the UTF-8 bytes of an email. Distinct emails may collide."""
    h = FNV_OFFSET
    for byte in email.encode('utf-8'):
        h ^= byte
        h = (h * FNV_PRIME) & MASK64
    return h


def vote_key(election_id: int, voter_id: int) -> int:
    """Pack (election_id, voter_id) into the has-voted index key."""
    if not 0 <= election_id <= MASK32 or not 0 <= voter_id <= MASK32:
        raise ValueError(f"ids out of 32-bit range: {election_id}, {voter_id}")
    return (election_id << 32) | voter_id


def _round_capacity(capacity: int) -> int:
    n = 1
    while n < capacity:
        n <<= 1
    return n


class HashIndex:
    MAX_LOAD = 0.7

    def __init__(self, capacity: int = 64):
        self._capacity = _round_capacity(capacity or 8)
        self._keys: List[int] = [0] * self._capacity
        self._values: List[Any] = [None] * self._capacity
        self._states = bytearray(self._capacity)
        self._size = 0
        self._tombstones = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    def __len__(self) -> int:
        return self._size

    def __contains__(self, key: int) -> bool:
        return self._find(key) >= 0

    def _check_key(self, key: int) -> None:
        if not isinstance(key, int) or not 0 <= key <= MASK64:
            raise ValueError(f"key must be an unsigned 64-bit int, got {key!r}")

    def _find(self, key: int) -> int:
        mask = self._capacity - 1
        idx = mix64(key) & mask
        for _ in range(self._capacity):
            state = self._states[idx]
            if state == EMPTY:
                return -1
            if state == OCCUPIED and self._keys[idx] == key:
                return idx
            idx = (idx + 1) & mask
        return -1

    def get(self, key: int, default: Any = None) -> Any:
        self._check_key(key)
        idx = self._find(key)
        return self._values[idx] if idx >= 0 else default

    def put(self, key: int, value: Any) -> None:
        self._check_key(key)
        if (self._size + self._tombstones + 1) > self._capacity * self.MAX_LOAD:
            self._rehash(self._capacity << 1)
        mask = self._capacity - 1
        idx = mix64(key) & mask
        first_tomb = -1
        while True:
            state = self._states[idx]
            if state == EMPTY:
                if first_tomb >= 0:
                    idx = first_tomb
                    self._tombstones -= 1
                self._keys[idx] = key
                self._values[idx] = value
                self._states[idx] = OCCUPIED
                self._size += 1
                return
            if state == TOMBSTONE:
                if first_tomb < 0:
                    first_tomb = idx
            elif self._keys[idx] == key:
                self._values[idx] = value
                return
            idx = (idx + 1) & mask

    def delete(self, key: int) -> bool:
        self._check_key(key)
        idx = self._find(key)
        if idx < 0:
            return False
        self._states[idx] = TOMBSTONE
        self._values[idx] = None
        self._size -= 1
        self._tombstones += 1
        return True

    def items(self) -> Iterator[Tuple[int, Any]]:
        for idx in range(self._capacity):
            if self._states[idx] == OCCUPIED:
                yield self._keys[idx], self._values[idx]

    def _rehash(self, new_capacity: int) -> None:
        # Build the new table fully before swapping so a failed allocation
        # leaves the current one untouched.
        try:
            keys = [0] * new_capacity
            values = [None] * new_capacity
            states = bytearray(new_capacity)
        except MemoryError as e:
            raise ResourceError(f"hash index growth to {new_capacity} slots failed") from e
        mask = new_capacity - 1
        for key, value in self.items():
            idx = mix64(key) & mask
            while states[idx] == OCCUPIED:
                idx = (idx + 1) & mask
            keys[idx] = key
            values[idx] = value
            states[idx] = OCCUPIED
        self._keys, self._values, self._states = keys, values, states
        self._capacity = new_capacity
        self._tombstones = 0
