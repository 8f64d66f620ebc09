"""Local directory transfer, standing in for an object store during development."""

import asyncio
import functools
import hashlib
import os
import shutil
import uuid
from pathlib import Path
from typing import Any

from resumable_multipart.exceptions import TransferFailed
from resumable_multipart.models import Token, UploadFile
from resumable_multipart.transfer.base import ChunkedTransfer, TransferFactory


class LocalTransfer(ChunkedTransfer):
    """Multipart upload into ``<root>/<bucket>/<key>``.

    Parts are staged in ``<root>/<bucket>/.multipart/<upload_id>/`` and
    concatenated when the upload completes.
    """

    def __init__(self, token: Token, root: str, part_size: int = ChunkedTransfer.DEFAULT_PART_SIZE):
        """Initialize the transfer.

        Args:
            token: Token naming the bucket; credentials are not checked
            root: Directory holding one sub-directory per bucket
            part_size: Size of each part in bytes (default: 1MB)
        """
        super().__init__(part_size=part_size)
        self.bucket = token.bucket
        self.bucket_dir = os.path.join(root, token.bucket)

    @classmethod
    def factory(cls, root: str, part_size: int = ChunkedTransfer.DEFAULT_PART_SIZE) -> TransferFactory:
        """Return a transfer factory writing under ``root``."""
        return functools.partial(cls, root=root, part_size=part_size)

    def _staging_dir(self, upload_id: str) -> str:
        return os.path.join(self.bucket_dir, ".multipart", upload_id)

    def object_path(self, key: str) -> str:
        """Get the file path an object is stored at."""
        return os.path.join(self.bucket_dir, *key.split("/"))

    def _is_resumable(self, state: dict[str, Any]) -> bool:
        staging = self._staging_dir(state["upload_id"])
        return all(
            os.path.exists(os.path.join(staging, str(part["PartNumber"])))
            for part in state["parts"]
        )

    async def _create(self, remote_name: str, file: UploadFile) -> str:
        upload_id = uuid.uuid4().hex
        os.makedirs(self._staging_dir(upload_id), exist_ok=True)
        return upload_id

    async def _upload_part(self, state: dict[str, Any], part_number: int, data: bytes) -> str:
        part_path = os.path.join(self._staging_dir(state["upload_id"]), str(part_number))
        try:
            with open(part_path, "wb") as f:
                f.write(data)
        except OSError as e:
            raise TransferFailed(f"Failed to write part {part_number}: {e}") from e
        # Let pause/stop requests run between parts.
        await asyncio.sleep(0)
        return f'"{hashlib.md5(data).hexdigest()}"'

    async def _complete(self, state: dict[str, Any]) -> Any:
        staging = self._staging_dir(state["upload_id"])
        target = self.object_path(state["key"])
        try:
            os.makedirs(os.path.dirname(target), exist_ok=True)
            with open(target, "wb") as out:
                for part in state["parts"]:
                    with open(os.path.join(staging, str(part["PartNumber"])), "rb") as f:
                        shutil.copyfileobj(f, out)
        except OSError as e:
            raise TransferFailed(f"Failed to assemble {state['key']}: {e}") from e
        shutil.rmtree(staging, ignore_errors=True)
        return {"Bucket": self.bucket, "Key": state["key"], "Path": target}

    def _request_url(self, state: dict[str, Any]) -> str:
        uri = Path(self.object_path(state["key"])).resolve().as_uri()
        return f"{uri}?uploadId={state['upload_id']}"
