"""Unit tests for log positions."""

from __future__ import annotations

import itertools

import pytest

from cdc_capture.capture.errors import MalformedPositionError
from cdc_capture.capture.lsn import (
    LSN_WIDTH,
    Lsn,
    TxLogPosition,
    compare_lsn,
    merge_key,
)


def _pos(commit: int, change: int) -> TxLogPosition:
    return TxLogPosition.value_of(Lsn.from_int(commit), Lsn.from_int(change))


class TestLsn:
    def test_from_bytes_roundtrips_raw_value(self):
        raw = bytes(range(LSN_WIDTH))
        assert Lsn.from_bytes(raw).to_bytes() == raw

    def test_from_bytes_accepts_bytearray_and_memoryview(self):
        raw = b"\x00" * 9 + b"\x05"
        assert Lsn.from_bytes(bytearray(raw)) == Lsn.from_bytes(memoryview(raw))

    def test_none_is_null(self):
        assert Lsn.from_bytes(None) is Lsn.NULL
        assert not Lsn.NULL.is_available
        assert Lsn.NULL.to_bytes() is None

    @pytest.mark.parametrize("width", [0, 8, 9, 11, 16])
    def test_wrong_width_raises(self, width: int):
        with pytest.raises(MalformedPositionError, match="10 bytes"):
            Lsn.from_bytes(b"\x01" * width)

    def test_non_bytes_raises(self):
        with pytest.raises(MalformedPositionError, match="byte sequence"):
            Lsn.from_bytes(12345)  # type: ignore[arg-type]

    def test_constructor_rejects_text(self):
        with pytest.raises(MalformedPositionError, match="byte sequence"):
            Lsn("abcdefghij")  # type: ignore[arg-type]

    def test_constructor_freezes_mutable_buffer(self):
        buffer = bytearray(LSN_WIDTH)
        lsn = Lsn(buffer)
        buffer[-1] = 7

        assert lsn.to_bytes() == bytes(LSN_WIDTH)
        assert isinstance(lsn.to_bytes(), bytes)
        assert hash(lsn) == hash(Lsn.from_int(0))
        assert str(lsn) == "00000000:00000000:0000"

    def test_null_less_than_every_value(self):
        assert Lsn.NULL < Lsn.from_int(0)
        assert Lsn.NULL < Lsn.from_bytes(b"\xff" * LSN_WIDTH)
        assert not Lsn.from_int(0) < Lsn.NULL
        assert Lsn.NULL == Lsn.from_bytes(None)

    def test_unsigned_bytewise_order(self):
        # High bit set must not make a value compare as negative
        low = Lsn.from_bytes(b"\x7f" + b"\xff" * 9)
        high = Lsn.from_bytes(b"\x80" + b"\x00" * 9)
        assert low < high

    def test_order_matches_integer_value(self):
        values = [0, 1, 255, 256, 2**63 - 1, 2**63, 2**64 + 7, 2**80 - 1]
        lsns = [Lsn.from_int(v) for v in values]
        assert sorted(reversed(lsns)) == lsns

    def test_compare_antisymmetric_and_transitive(self):
        lsns = [Lsn.NULL] + [Lsn.from_int(v) for v in (0, 3, 2**70, 2**79 + 1)]
        for a, b in itertools.product(lsns, repeat=2):
            assert compare_lsn(a, b) == -compare_lsn(b, a)
        for a, b, c in itertools.product(lsns, repeat=3):
            if compare_lsn(a, b) < 0 and compare_lsn(b, c) < 0:
                assert compare_lsn(a, c) < 0

    def test_from_int_overflow_raises(self):
        with pytest.raises(MalformedPositionError):
            Lsn.from_int(2**80)

    def test_string_form(self):
        lsn = Lsn.from_bytes(bytes.fromhex("0000002d00000c100003"))
        assert str(lsn) == "0000002d:00000c10:0003"
        assert str(Lsn.NULL) == "NULL"

    def test_from_string(self):
        lsn = Lsn.from_string("0000002d:00000c10:0003")
        assert lsn.to_bytes() == bytes.fromhex("0000002d00000c100003")
        assert Lsn.from_string("NULL") is Lsn.NULL
        assert Lsn.from_string(None) is Lsn.NULL

    @pytest.mark.parametrize("text", ["", "2d:c10:3", "0000002d-00000c10-0003", "zz"])
    def test_from_string_malformed(self, text: str):
        with pytest.raises(MalformedPositionError):
            Lsn.from_string(text)

    def test_increment_carries(self):
        lsn = Lsn.from_string("00000000:000000ff:ffff")
        assert str(lsn.increment()) == "00000000:00000100:0000"

    def test_increment_null_raises(self):
        with pytest.raises(MalformedPositionError):
            Lsn.NULL.increment()

    def test_hashable(self):
        assert {Lsn.from_int(5), Lsn.from_int(5), Lsn.NULL} == {
            Lsn.from_int(5),
            Lsn.NULL,
        }


class TestTxLogPosition:
    @pytest.mark.parametrize(
        ("p", "q", "expected"),
        [
            ((100, 1), (100, 2), True),
            ((100, 2), (100, 1), False),
            ((99, 9), (100, 1), True),
            ((101, 0), (100, 9), False),
            ((100, 1), (100, 1), False),
        ],
    )
    def test_commit_then_row_order(self, p, q, expected):
        assert (_pos(*p) < _pos(*q)) is expected

    def test_null_position(self):
        assert TxLogPosition.value_of(Lsn.NULL, Lsn.NULL) is TxLogPosition.NULL
        assert not TxLogPosition.NULL.is_available
        assert str(TxLogPosition.NULL) == "NULL"

    def test_str(self):
        pos = TxLogPosition(
            Lsn.from_string("0000002d:00000c10:0003"),
            Lsn.from_string("0000002d:00000c10:0002"),
        )
        assert str(pos) == "0000002d:00000c10:0003(0000002d:00000c10:0002)"

    def test_equality_and_hash(self):
        assert _pos(1, 2) == _pos(1, 2)
        assert hash(_pos(1, 2)) == hash(_pos(1, 2))
        assert _pos(1, 2) != _pos(1, 3)


class TestMergeKey:
    def test_exhausted_sorts_after_real_positions(self):
        real = _pos(2**79, 2**79)
        assert merge_key(real) < merge_key(TxLogPosition.NULL)

    def test_real_positions_keep_their_order(self):
        assert merge_key(_pos(100, 1)) < merge_key(_pos(100, 2))
