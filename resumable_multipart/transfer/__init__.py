"""Multipart transfer implementations."""

from resumable_multipart.transfer.base import (
    ChunkedTransfer,
    ProgressCallback,
    Transfer,
    TransferFactory,
    TransferResult,
)
from resumable_multipart.transfer.local import LocalTransfer
from resumable_multipart.transfer.s3 import S3MultipartTransfer
from resumable_multipart.transfer.stats import UploadStats

__all__ = [
    "Transfer",
    "ChunkedTransfer",
    "TransferFactory",
    "TransferResult",
    "ProgressCallback",
    "LocalTransfer",
    "S3MultipartTransfer",
    "UploadStats",
]
