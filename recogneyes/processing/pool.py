"""Fixed-capacity arena of identity slots with a free list."""

from __future__ import annotations

import heapq
from typing import Iterator, Optional

from recogneyes.errors import CapacityExceeded
from recogneyes.models import Rect, TrackedIdentity


class IdentityPool:
    """Dense pool of TrackedIdentity records addressed by stable slot index.

    Destroyed identities return their slot to the free list; the lowest
    free slot is always handed out first so iteration order stays stable.
    """

    def __init__(self, capacity: int):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self._slots: list[Optional[TrackedIdentity]] = [None] * capacity
        self._free: list[int] = list(range(capacity))  # min-heap

    @property
    def capacity(self) -> int:
        return len(self._slots)

    def __len__(self) -> int:
        return len(self._slots) - len(self._free)

    def __iter__(self) -> Iterator[TrackedIdentity]:
        """Iterate live identities in slot order."""
        for identity in self._slots:
            if identity is not None:
                yield identity

    def get(self, slot: int) -> Optional[TrackedIdentity]:
        return self._slots[slot]

    @property
    def is_full(self) -> bool:
        return not self._free

    def allocate(self, identity_id: int, rect: Rect,
                 position: tuple[float, float],
                 size: tuple[float, float],
                 frame_index: int = 0) -> TrackedIdentity:
        """Place a new identity in the lowest free slot.

        Raises CapacityExceeded when every slot is occupied.
        """
        if not self._free:
            raise CapacityExceeded(
                f"identity pool full ({self.capacity} slots)"
            )
        slot = heapq.heappop(self._free)
        identity = TrackedIdentity(
            identity_id=identity_id,
            slot=slot,
            last_known_rect=rect,
            smoothed_position=position,
            smoothed_size=size,
            first_seen_frame=frame_index,
            last_seen_frame=frame_index,
        )
        self._slots[slot] = identity
        return identity

    def release(self, slot: int) -> TrackedIdentity:
        """Free a slot and return the identity that occupied it."""
        identity = self._slots[slot]
        if identity is None:
            raise KeyError(f"slot {slot} is already free")
        self._slots[slot] = None
        heapq.heappush(self._free, slot)
        return identity
