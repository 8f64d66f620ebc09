"""Resumable Multipart Upload Library

Chunked, resumable uploads of large files to object storage, with persisted
progress, bounded retries and pause/resume/stop control.
"""

__version__ = "0.1.0"

from resumable_multipart.config import UploaderOptions
from resumable_multipart.events import EventKind, EventNotifier
from resumable_multipart.exceptions import (
    ResumableUploadError,
    TokenRequestError,
    TransferFailed,
    UploadCancelled,
)
from resumable_multipart.fingerprint import Fingerprint
from resumable_multipart.models import (
    Checkpoint,
    FileType,
    ResumeDecision,
    SubCategory,
    Token,
    Track,
    UploadFile,
    UploadParams,
    UploadState,
)
from resumable_multipart.policy import UseCacheParam
from resumable_multipart.storage import (
    FileKeyValueStore,
    KeyValueStore,
    MemoryKeyValueStore,
    SQLiteKeyValueStore,
    TrackStore,
)
from resumable_multipart.token import HttpTokenProvider, TokenProvider
from resumable_multipart.transfer import (
    LocalTransfer,
    S3MultipartTransfer,
    Transfer,
    TransferResult,
    UploadStats,
)
from resumable_multipart.uploader import ObjectStorageUploader

__all__ = [
    "ObjectStorageUploader",
    "UploaderOptions",
    "EventKind",
    "EventNotifier",
    "ResumableUploadError",
    "TokenRequestError",
    "TransferFailed",
    "UploadCancelled",
    "Fingerprint",
    "Checkpoint",
    "FileType",
    "ResumeDecision",
    "SubCategory",
    "Token",
    "Track",
    "UploadFile",
    "UploadParams",
    "UploadState",
    "UseCacheParam",
    "KeyValueStore",
    "MemoryKeyValueStore",
    "FileKeyValueStore",
    "SQLiteKeyValueStore",
    "TrackStore",
    "TokenProvider",
    "HttpTokenProvider",
    "Transfer",
    "TransferResult",
    "LocalTransfer",
    "S3MultipartTransfer",
    "UploadStats",
]
