"""Transaction log positions.

``Lsn`` wraps the 10-byte log sequence number SQL Server stores in the
``__$start_lsn`` / ``__$seqval`` columns of a change table.  Ordering is
unsigned byte-wise, which matches the log's own big-endian counter.

``TxLogPosition`` pairs the commit LSN of a transaction with the row LSN
inside it and gives the total order used to merge change tables.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from functools import total_ordering
from typing import ClassVar

from cdc_capture.capture.errors import MalformedPositionError

LSN_WIDTH = 10

# 0000002d:00000c10:0003
_LSN_TEXT = re.compile(r"^([0-9a-fA-F]{8}):([0-9a-fA-F]{8}):([0-9a-fA-F]{4})$")


@total_ordering
class Lsn:
    """An immutable log sequence number, or the NULL position."""

    __slots__ = ("_binary",)

    NULL: ClassVar[Lsn]

    def __init__(self, binary: bytes | bytearray | memoryview | None) -> None:
        if binary is not None:
            if not isinstance(binary, (bytes, bytearray, memoryview)):
                msg = f"LSN must be a byte sequence, got {type(binary).__name__}"
                raise MalformedPositionError(msg)
            binary = bytes(binary)
            if len(binary) != LSN_WIDTH:
                msg = f"LSN must be {LSN_WIDTH} bytes, got {len(binary)}"
                raise MalformedPositionError(msg)
        self._binary: bytes | None = binary

    @classmethod
    def from_bytes(cls, raw: bytes | bytearray | memoryview | None) -> Lsn:
        """Build an LSN from raw column bytes; ``None`` gives ``Lsn.NULL``."""
        if raw is None:
            return cls.NULL
        return cls(raw)

    @classmethod
    def from_string(cls, text: str | None) -> Lsn:
        """Parse the ``xxxxxxxx:xxxxxxxx:xxxx`` form produced by ``str()``."""
        if text is None or text == "NULL":
            return cls.NULL
        match = _LSN_TEXT.match(text.strip())
        if match is None:
            msg = f"Invalid LSN string '{text}'"
            raise MalformedPositionError(msg)
        return cls(bytes.fromhex("".join(match.groups())))

    @classmethod
    def from_int(cls, value: int) -> Lsn:
        """Build an LSN from its unsigned integer value."""
        try:
            return cls(value.to_bytes(LSN_WIDTH, "big", signed=False))
        except OverflowError as exc:
            msg = f"LSN value {value} does not fit in {LSN_WIDTH} bytes"
            raise MalformedPositionError(msg) from exc

    @property
    def is_available(self) -> bool:
        return self._binary is not None

    def to_bytes(self) -> bytes | None:
        return self._binary

    def increment(self) -> Lsn:
        """Return the position directly after this one."""
        if self._binary is None:
            msg = "Cannot increment the NULL LSN"
            raise MalformedPositionError(msg)
        return Lsn.from_int(int.from_bytes(self._binary, "big") + 1)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Lsn):
            return NotImplemented
        return self._binary == other._binary

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, Lsn):
            return NotImplemented
        if self._binary is None:
            return other._binary is not None
        if other._binary is None:
            return False
        # bytes compare unsigned and lexicographically
        return self._binary < other._binary

    def __hash__(self) -> int:
        return hash(self._binary)

    def __str__(self) -> str:
        if self._binary is None:
            return "NULL"
        h = self._binary.hex()
        return f"{h[0:8]}:{h[8:16]}:{h[16:20]}"

    def __repr__(self) -> str:
        return f"Lsn({self})"


Lsn.NULL = Lsn(None)


def compare_lsn(a: Lsn, b: Lsn) -> int:
    """Three-way comparison: negative, zero or positive."""
    if a == b:
        return 0
    return -1 if a < b else 1


@total_ordering
@dataclass(frozen=True, slots=True, eq=False)
class TxLogPosition:
    """Position of a single changed row: ``(commit_lsn, change_lsn)``."""

    commit_lsn: Lsn
    change_lsn: Lsn

    NULL: ClassVar[TxLogPosition]

    @classmethod
    def value_of(cls, commit_lsn: Lsn, change_lsn: Lsn) -> TxLogPosition:
        if not commit_lsn.is_available and not change_lsn.is_available:
            return cls.NULL
        return cls(commit_lsn, change_lsn)

    @property
    def is_available(self) -> bool:
        return self.commit_lsn.is_available and self.change_lsn.is_available

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, TxLogPosition):
            return NotImplemented
        return (self.commit_lsn, self.change_lsn) == (
            other.commit_lsn,
            other.change_lsn,
        )

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, TxLogPosition):
            return NotImplemented
        if self.commit_lsn != other.commit_lsn:
            return self.commit_lsn < other.commit_lsn
        return self.change_lsn < other.change_lsn

    def __hash__(self) -> int:
        return hash((self.commit_lsn, self.change_lsn))

    def __str__(self) -> str:
        if self == TxLogPosition.NULL:
            return "NULL"
        return f"{self.commit_lsn}({self.change_lsn})"


TxLogPosition.NULL = TxLogPosition(Lsn.NULL, Lsn.NULL)


def merge_key(position: TxLogPosition) -> tuple[int, TxLogPosition]:
    """Sort key placing the NULL (exhausted) position after every real one."""
    return (1, position) if position == TxLogPosition.NULL else (0, position)
