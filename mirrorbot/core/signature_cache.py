"""
Bounded FIFO record of processed transaction signatures
"""

from collections import OrderedDict

from mirrorbot.core.logger import get_logger


logger = get_logger(__name__)


class SignatureCache:
    """
    At-most-once membership test for ledger event ids

    Eviction is strict insertion order: the oldest recorded id leaves first,
    lookups never refresh an entry. Process lifetime only.
    """

    def __init__(self, capacity: int):
        if capacity < 1:
            raise ValueError(f"capacity must be at least 1, got {capacity}")
        self.capacity = capacity
        self._entries: "OrderedDict[str, None]" = OrderedDict()

    @classmethod
    def for_window(cls, window: int, multiplier: int = 10) -> "SignatureCache":
        """Size the cache as a multiple of how many ids one poll window can deliver"""
        if window < 1 or multiplier < 1:
            raise ValueError("window and multiplier must both be at least 1")
        return cls(window * multiplier)

    def seen(self, signature: str) -> bool:
        return signature in self._entries

    def record(self, signature: str) -> None:
        if signature in self._entries:
            return
        self._entries[signature] = None
        while len(self._entries) > self.capacity:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug("signature_evicted", signature=evicted)

    def __contains__(self, signature: str) -> bool:
        return self.seen(signature)

    def __len__(self) -> int:
        return len(self._entries)
