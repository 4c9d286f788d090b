"""Unit tests for the sequence authority."""

import threading

import pytest

from spb_edge.errors import ProtocolStateError
from spb_edge.sequence import SEQ_MODULUS, SequenceAuthority


class TestSeq:
    def test_starts_at_zero_and_increments(self) -> None:
        authority = SequenceAuthority()

        assert [authority.next_seq() for _ in range(5)] == [0, 1, 2, 3, 4]
        assert authority.seq == 5

    def test_wraps_after_255(self) -> None:
        authority = SequenceAuthority(seq=254)

        assert [authority.next_seq() for _ in range(4)] == [254, 255, 0, 1]

    def test_concurrent_callers_get_unique_values(self) -> None:
        authority = SequenceAuthority()
        seen = []
        lock = threading.Lock()

        def worker() -> None:
            values = [authority.next_seq() for _ in range(64)]
            with lock:
                seen.extend(values)

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sorted(seen) == list(range(SEQ_MODULUS))


class TestBdSeq:
    def test_undefined_before_first_connection(self) -> None:
        authority = SequenceAuthority()

        assert not authority.has_connected()
        assert authority.upcoming_bd_seq() == 0
        with pytest.raises(ProtocolStateError):
            authority.current_bd_seq()

    def test_advance_moves_current_to_upcoming(self) -> None:
        authority = SequenceAuthority()

        assert authority.advance_bd_seq() == 0
        assert authority.current_bd_seq() == 0
        assert authority.upcoming_bd_seq() == 1
        assert authority.advance_bd_seq() == 1
        assert authority.current_bd_seq() == 1

    def test_peeking_does_not_mutate(self) -> None:
        authority = SequenceAuthority()
        authority.advance_bd_seq()

        authority.upcoming_bd_seq()
        authority.current_bd_seq()

        assert authority.current_bd_seq() == 0

    def test_bd_seq_wraps(self) -> None:
        authority = SequenceAuthority()
        for _ in range(SEQ_MODULUS):
            authority.advance_bd_seq()

        assert authority.current_bd_seq() == 255
        assert authority.advance_bd_seq() == 0

    def test_advancing_bd_seq_leaves_seq_alone(self) -> None:
        authority = SequenceAuthority()
        authority.next_seq()
        authority.advance_bd_seq()

        assert authority.seq == 1
