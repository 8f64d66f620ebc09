"""S3 multipart transfer using boto3."""

import asyncio
import functools
from typing import Any, Optional
from urllib.parse import quote

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from resumable_multipart.exceptions import TransferFailed
from resumable_multipart.models import Token, UploadFile
from resumable_multipart.transfer.base import ChunkedTransfer, TransferFactory


class S3MultipartTransfer(ChunkedTransfer):
    """Multipart upload to an S3-compatible service with temporary credentials.

    boto3 calls block, so each one runs in a worker thread.

    Example:
        >>> transfer = S3MultipartTransfer(token)
        >>> result = await transfer.multipart_upload(token.file_name, file)
    """

    # S3 rejects non-final parts smaller than 5 MiB.
    DEFAULT_PART_SIZE = 5 * 1024 * 1024

    def __init__(
        self,
        token: Token,
        part_size: int = DEFAULT_PART_SIZE,
        endpoint_url: Optional[str] = None,
        client: Any = None,
    ):
        """Initialize the transfer.

        Args:
            token: Credentials, region and bucket issued for this upload
            part_size: Size of each part in bytes (default: 5MB)
            endpoint_url: Custom endpoint for S3-compatible services
            client: Preconfigured boto3 S3 client, mainly for tests
        """
        super().__init__(part_size=part_size)
        self.bucket = token.bucket
        self.client = client or boto3.client(
            "s3",
            region_name=token.region,
            aws_access_key_id=token.access_key_id,
            aws_secret_access_key=token.access_key_secret,
            aws_session_token=token.security_token or None,
            endpoint_url=endpoint_url,
        )

    @classmethod
    def factory(
        cls, part_size: int = DEFAULT_PART_SIZE, endpoint_url: Optional[str] = None
    ) -> TransferFactory:
        """Return a transfer factory bound to these settings."""
        return functools.partial(cls, part_size=part_size, endpoint_url=endpoint_url)

    async def _call(self, method: str, **kwargs) -> dict[str, Any]:
        try:
            return await asyncio.to_thread(getattr(self.client, method), **kwargs)
        except (BotoCoreError, ClientError) as e:
            raise TransferFailed(f"S3 {method} failed: {str(e)}") from e

    async def _create(self, remote_name: str, file: UploadFile) -> str:
        kwargs = {"Bucket": self.bucket, "Key": remote_name}
        if file.content_type:
            kwargs["ContentType"] = file.content_type
        response = await self._call("create_multipart_upload", **kwargs)
        return response["UploadId"]

    async def _upload_part(self, state: dict[str, Any], part_number: int, data: bytes) -> str:
        response = await self._call(
            "upload_part",
            Bucket=self.bucket,
            Key=state["key"],
            UploadId=state["upload_id"],
            PartNumber=part_number,
            Body=data,
        )
        return response["ETag"]

    async def _complete(self, state: dict[str, Any]) -> Any:
        return await self._call(
            "complete_multipart_upload",
            Bucket=self.bucket,
            Key=state["key"],
            UploadId=state["upload_id"],
            MultipartUpload={"Parts": state["parts"]},
        )

    def _request_url(self, state: dict[str, Any]) -> str:
        endpoint = self.client.meta.endpoint_url.rstrip("/")
        return f"{endpoint}/{self.bucket}/{quote(state['key'])}?uploadId={state['upload_id']}"
