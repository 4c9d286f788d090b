import threading
from typing import Optional

from .errors import ProtocolStateError

# Sparkplug B sequence numbers are 0-255
SEQ_MODULUS = 256


class SequenceAuthority:
    """Owns the per-message ``seq`` counter and the birth/death ``bdSeq`` counter.

    Both counters live behind one lock. The session controller passes its own
    lock in so that lifecycle flags and counters share a single mutual
    exclusion domain.

    ``seq`` is never reset on reconnect; it keeps wrapping for the lifetime of
    the process. ``bdSeq`` moves once per connection (and once per rebirth)
    so a consumer can pair a death certificate with the birth it terminates.
    """

    def __init__(self, lock: Optional[threading.RLock] = None, seq: int = 0):
        self._lock = lock if lock is not None else threading.RLock()
        self._seq = seq % SEQ_MODULUS
        self._bd_seq: Optional[int] = None

    @property
    def seq(self) -> int:
        """The value the next call to next_seq() will return."""
        with self._lock:
            return self._seq

    def next_seq(self) -> int:
        with self._lock:
            seq = self._seq
            self._seq = (self._seq + 1) % SEQ_MODULUS
            return seq

    def upcoming_bd_seq(self) -> int:
        """bdSeq the next connection will use, without consuming it."""
        with self._lock:
            if self._bd_seq is None:
                return 0
            return (self._bd_seq + 1) % SEQ_MODULUS

    def current_bd_seq(self) -> int:
        with self._lock:
            if self._bd_seq is None:
                raise ProtocolStateError("bdSeq is undefined before the first connection")
            return self._bd_seq

    def advance_bd_seq(self) -> int:
        with self._lock:
            self._bd_seq = self.upcoming_bd_seq()
            return self._bd_seq

    def has_connected(self) -> bool:
        with self._lock:
            return self._bd_seq is not None
