"""Progress accounting for one chunked transfer."""

import time
from dataclasses import dataclass, field

MIB = 1024 * 1024


@dataclass
class UploadStats:
    """Byte and part counters of a transfer.

    Counters include parts taken over from a checkpoint; ``resumed_bytes``
    records how many, so throughput only reflects what this transfer sent.

    Attributes:
        total_bytes: Size of the file
        total_parts: Number of parts the file is split into
        uploaded_bytes: Bytes stored remotely so far
        parts_completed: Parts stored remotely so far
        resumed_bytes: Bytes already stored when the transfer started
        start_time: Epoch seconds when the transfer started
    """

    total_bytes: int
    total_parts: int = 1
    uploaded_bytes: int = 0
    parts_completed: int = 0
    resumed_bytes: int = 0
    start_time: float = field(default_factory=time.time)

    def record_part(self, part_number: int, end_offset: int) -> None:
        """Account for a part whose last byte sits before ``end_offset``."""
        self.parts_completed = part_number
        self.uploaded_bytes = min(self.total_bytes, end_offset)

    @property
    def elapsed_time(self) -> float:
        return time.time() - self.start_time

    @property
    def sent_bytes(self) -> int:
        return max(0, self.uploaded_bytes - self.resumed_bytes)

    @property
    def upload_speed(self) -> float:
        """Bytes per second sent by this transfer."""
        elapsed = self.elapsed_time
        return self.sent_bytes / elapsed if elapsed > 0 else 0.0

    @property
    def upload_speed_mbps(self) -> float:
        return self.upload_speed / MIB

    @property
    def fraction(self) -> float:
        """Progress between 0 and 1; an empty file counts parts instead of bytes."""
        if self.total_bytes > 0:
            return min(1.0, self.uploaded_bytes / self.total_bytes)
        return self.parts_completed / self.total_parts if self.total_parts > 0 else 0.0

    @property
    def progress_percent(self) -> float:
        return self.fraction * 100

    @property
    def eta_seconds(self) -> float:
        """Estimated seconds left at the current speed, 0 when unknown."""
        speed = self.upload_speed
        if speed <= 0:
            return 0.0
        return (self.total_bytes - self.uploaded_bytes) / speed
