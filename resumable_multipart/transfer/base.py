"""Transfer primitives: multipart upload of one file to object storage."""

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from resumable_multipart.exceptions import UploadCancelled
from resumable_multipart.models import Checkpoint, Token, UploadFile
from resumable_multipart.transfer.stats import UploadStats

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float, Checkpoint], None]


@dataclass
class TransferResult:
    """Outcome of a completed multipart upload.

    Attributes:
        request_urls: URLs of the requests that completed the upload
        raw: Response returned by the storage service
    """

    request_urls: list[str] = field(default_factory=list)
    raw: Any = None


class Transfer(ABC):
    """Abstract multipart transfer of one file.

    Implementations must resume from a checkpoint they produced earlier and
    must honour ``cancel()`` by raising ``UploadCancelled``.
    """

    @abstractmethod
    async def multipart_upload(
        self,
        remote_name: str,
        file: UploadFile,
        checkpoint: Optional[Checkpoint] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> TransferResult:
        """Upload ``file`` as ``remote_name``.

        Args:
            remote_name: Object name assigned by the token endpoint
            file: File to upload
            checkpoint: Checkpoint of an earlier, interrupted transfer
            on_progress: Called with (fraction 0-1, checkpoint) after every part

        Returns:
            TransferResult of the completed upload

        Raises:
            UploadCancelled: If ``cancel()`` was called
        """
        pass

    @abstractmethod
    def cancel(self) -> None:
        """Ask the running transfer to stop at its next part boundary."""
        pass


TransferFactory = Callable[[Token], Transfer]


class ChunkedTransfer(Transfer):
    """Sequential part-by-part upload shared by concrete transfers.

    Subclasses provide the storage calls; this class handles checkpoints,
    progress reporting and cancellation. The checkpoint payload is a JSON
    object ``{upload_id, key, file_size, part_size, parts}`` where ``parts``
    lists ``{"PartNumber", "ETag"}`` in upload order.
    """

    CHECKPOINT_VERSION = 1
    DEFAULT_PART_SIZE = 1024 * 1024

    def __init__(self, part_size: int = DEFAULT_PART_SIZE):
        if part_size < 1:
            raise ValueError(f"part_size must be at least 1 byte, got {part_size}")
        self.part_size = int(part_size)
        self._cancelled = False
        self._stats: Optional[UploadStats] = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def stats(self) -> Optional[UploadStats]:
        """Statistics of the running or last transfer, if any."""
        return self._stats

    def cancel(self) -> None:
        self._cancelled = True

    def _raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise UploadCancelled("Transfer cancelled")

    @abstractmethod
    async def _create(self, remote_name: str, file: UploadFile) -> str:
        """Start a multipart session and return its upload id."""
        pass

    @abstractmethod
    async def _upload_part(self, state: dict[str, Any], part_number: int, data: bytes) -> str:
        """Upload one part and return its ETag."""
        pass

    @abstractmethod
    async def _complete(self, state: dict[str, Any]) -> Any:
        """Assemble the uploaded parts and return the raw service response."""
        pass

    @abstractmethod
    def _request_url(self, state: dict[str, Any]) -> str:
        pass

    def _is_resumable(self, state: dict[str, Any]) -> bool:
        return True

    def _restore(
        self, checkpoint: Optional[Checkpoint], remote_name: str, file: UploadFile
    ) -> Optional[dict[str, Any]]:
        """Decode a checkpoint, or return None when it cannot be continued."""
        if checkpoint is None:
            return None
        if checkpoint.version != self.CHECKPOINT_VERSION:
            logger.info(f"Discarding checkpoint with version {checkpoint.version}")
            return None
        try:
            state = json.loads(checkpoint.payload)
            parts = state["parts"]
            valid = (
                state["file_size"] == file.size
                and int(state["part_size"]) > 0
                and bool(state["upload_id"])
                and [p["PartNumber"] for p in parts] == list(range(1, len(parts) + 1))
            )
        except (ValueError, KeyError, TypeError) as e:
            logger.info(f"Discarding unreadable checkpoint: {e}")
            return None
        if not valid or not self._is_resumable(state):
            logger.info(f"Checkpoint does not match {file.name}, starting over")
            return None
        if state["key"] != remote_name:
            # Parts already uploaded belong to the checkpoint's object.
            logger.info(f"Continuing {state['key']} instead of {remote_name}")
        return state

    def _checkpoint(self, state: dict[str, Any]) -> Checkpoint:
        return Checkpoint(payload=json.dumps(state), version=self.CHECKPOINT_VERSION)

    async def multipart_upload(
        self,
        remote_name: str,
        file: UploadFile,
        checkpoint: Optional[Checkpoint] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> TransferResult:
        self._raise_if_cancelled()

        state = self._restore(checkpoint, remote_name, file)
        fresh = state is None
        if state is None:
            upload_id = await self._create(remote_name, file)
            state = {
                "upload_id": upload_id,
                "key": remote_name,
                "file_size": file.size,
                "part_size": self.part_size,
                "parts": [],
            }
            logger.info(f"Multipart upload {upload_id} created for {remote_name}")
        else:
            logger.info(
                f"Resuming multipart upload {state['upload_id']} "
                f"after {len(state['parts'])} part(s)"
            )

        part_size = int(state["part_size"])
        total_parts = max(1, -(-file.size // part_size))
        done_bytes = min(file.size, len(state["parts"]) * part_size)
        self._stats = UploadStats(
            total_bytes=file.size,
            total_parts=total_parts,
            uploaded_bytes=done_bytes,
            parts_completed=len(state["parts"]),
            resumed_bytes=done_bytes,
        )

        if fresh and on_progress:
            # Persist the upload id before the first part lands.
            on_progress(self._stats.fraction, self._checkpoint(state))

        with file.open() as fh:
            for part_number in range(len(state["parts"]) + 1, total_parts + 1):
                self._raise_if_cancelled()

                offset = (part_number - 1) * part_size
                fh.seek(offset)
                data = fh.read(part_size)
                etag = await self._upload_part(state, part_number, data)
                state["parts"].append({"PartNumber": part_number, "ETag": etag})

                self._stats.record_part(part_number, offset + len(data))
                logger.debug(f"Part {part_number}/{total_parts} of {remote_name} uploaded")

                if on_progress:
                    on_progress(self._stats.fraction, self._checkpoint(state))

        self._raise_if_cancelled()
        raw = await self._complete(state)
        logger.info(
            f"Multipart upload of {remote_name} completed in "
            f"{self._stats.elapsed_time:.2f}s ({self._stats.upload_speed_mbps:.2f} MB/s)"
        )
        return TransferResult(request_urls=[self._request_url(state)], raw=raw)
