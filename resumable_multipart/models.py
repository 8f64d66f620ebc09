"""Records shared by the fingerprint, the track store and the upload engine."""

import mimetypes
import os
import secrets
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import IO, Any, Iterator, Optional


class FileType(IntEnum):
    """File category understood by the token endpoint."""

    MISC = 1
    IMAGE = 2
    VIDEO = 3


class SubCategory(IntEnum):
    """Remote sub-directory the token endpoint assigns the object to."""

    MISC = 1
    MONITOR_VIDEO = 2


class ResumeDecision(Enum):
    """Outcome of the resume policy for a file with a cached track."""

    YES = "yes"
    NO = "no"
    CANCEL = "cancel"


class UploadState(Enum):
    """States of the upload engine."""

    IDLE = "idle"
    FETCHING_TOKEN = "fetching_token"
    TRANSFERRING = "transferring"
    PAUSED = "paused"
    RETRY_PENDING = "retry_pending"
    RETRY_WAIT = "retry_wait"
    DONE = "done"
    FAILED = "failed"


def get_extension(name: str) -> str:
    """Return the lower-cased extension of ``name``.

    Everything after the first dot counts, so ``backup.tar.gz`` gives
    ``tar.gz``. Names without a dot give an empty string.
    """
    _, _, ext = (name or "").partition(".")
    return ext.lower()


def guess_content_type(name: str) -> str:
    content_type, _ = mimetypes.guess_type(name)
    return content_type or ""


@dataclass(frozen=True)
class UploadParams:
    """Caller intent for one upload.

    Fields left as None are filled from the uploader options when an upload
    starts; stored tracks always carry resolved parameters.

    Attributes:
        file_type: Category sent to the token endpoint
        sub_category: Remote sub-directory sent to the token endpoint
        file_extension: Extension without the leading dot, lower-cased
    """

    file_type: Optional[FileType] = None
    sub_category: Optional[SubCategory] = None
    file_extension: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "file_type": None if self.file_type is None else int(self.file_type),
            "sub_category": None if self.sub_category is None else int(self.sub_category),
            "file_extension": self.file_extension,
        }

    def to_query(self) -> dict[str, Any]:
        """Query parameters in the token endpoint's naming."""
        return {
            "fileType": int(self.file_type or FileType.MISC),
            "subCategory": int(self.sub_category or SubCategory.MISC),
            "fileExtension": self.file_extension or "",
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "UploadParams":
        return cls(
            file_type=FileType(data["file_type"]),
            sub_category=SubCategory(data["sub_category"]),
            file_extension=str(data.get("file_extension") or ""),
        )


@dataclass
class UploadFile:
    """A local file handed to the uploader.

    Either ``path`` or ``stream`` locates the content. A stream stays owned by
    the caller and is never closed here.
    """

    name: str
    size: int
    content_type: str = ""
    last_modified: int = 0  # milliseconds since the epoch
    path: Optional[str] = None
    stream: Optional[IO[bytes]] = field(default=None, repr=False, compare=False)

    @classmethod
    def from_path(cls, path: str, content_type: Optional[str] = None) -> "UploadFile":
        """Describe the file at ``path``.

        Raises:
            FileNotFoundError: If the file doesn't exist
        """
        if not os.path.exists(path):
            raise FileNotFoundError(f"File not found: {path}")

        stat = os.stat(path)
        name = os.path.basename(path)
        return cls(
            name=name,
            size=stat.st_size,
            content_type=content_type if content_type is not None else guess_content_type(name),
            last_modified=int(stat.st_mtime * 1000),
            path=path,
        )

    @classmethod
    def from_stream(
        cls,
        stream: IO[bytes],
        name: str,
        content_type: Optional[str] = None,
        last_modified: int = 0,
    ) -> "UploadFile":
        """Describe a seekable binary stream."""
        original_pos = stream.tell()
        try:
            stream.seek(0, os.SEEK_END)
            size = stream.tell()
        finally:
            stream.seek(original_pos)

        return cls(
            name=name,
            size=size,
            content_type=content_type if content_type is not None else guess_content_type(name),
            last_modified=last_modified,
            stream=stream,
        )

    @contextmanager
    def open(self) -> Iterator[IO[bytes]]:
        """Yield a readable binary handle to the content."""
        if self.stream is not None:
            yield self.stream
            return
        if not self.path:
            raise ValueError("Either path or stream must be provided")
        with open(self.path, "rb") as fh:
            yield fh

    def identity(self, params: UploadParams) -> "FileIdentity":
        return FileIdentity(
            name=self.name,
            size=self.size,
            type=self.content_type,
            last_modified=self.last_modified,
            params=params,
        )


@dataclass(frozen=True)
class FileIdentity:
    """Identity attributes of a file plus the upload parameters.

    Only used to compute a fingerprint.
    """

    name: str
    size: int
    type: str
    last_modified: int
    params: UploadParams

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "size": self.size,
            "type": self.type,
            "last_modified": self.last_modified,
            **self.params.to_dict(),
        }


@dataclass(frozen=True)
class Token:
    """Short-lived storage credentials issued for one upload.

    Attributes:
        region: Storage region
        bucket: Target bucket
        security_token: Session token of the temporary credentials
        access_key_id: Temporary access key id
        access_key_secret: Temporary access key secret
        file_name: Remote object name assigned by the token endpoint
    """

    region: str
    bucket: str
    security_token: str
    access_key_id: str
    access_key_secret: str
    file_name: str

    def to_dict(self) -> dict[str, str]:
        return {
            "region": self.region,
            "bucket": self.bucket,
            "security_token": self.security_token,
            "access_key_id": self.access_key_id,
            "access_key_secret": self.access_key_secret,
            "file_name": self.file_name,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Token":
        return cls(
            region=data["region"],
            bucket=data["bucket"],
            security_token=data["security_token"],
            access_key_id=data["access_key_id"],
            access_key_secret=data["access_key_secret"],
            file_name=data["file_name"],
        )

    @classmethod
    def from_response(cls, data: dict[str, Any]) -> "Token":
        """Build a token from the endpoint's ``data`` object."""
        return cls(
            region=data["region"],
            bucket=data["bucket"],
            security_token=data["securityToken"],
            access_key_id=data["accessKeyId"],
            access_key_secret=data["accessKeySecret"],
            file_name=data["fileName"],
        )


@dataclass(frozen=True)
class Checkpoint:
    """Opaque resumption state produced by a transfer.

    ``payload`` is whatever the transfer encoded; nothing outside the
    transfer interprets it. ``version`` lets a transfer reject checkpoints
    written by an incompatible release.
    """

    payload: str
    version: int = 1

    def to_dict(self) -> dict[str, Any]:
        return {"version": self.version, "payload": self.payload}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Checkpoint":
        payload = data["payload"]
        if not isinstance(payload, str):
            raise TypeError("checkpoint payload must be a string")
        return cls(payload=payload, version=int(data["version"]))


@dataclass
class Track:
    """Persisted progress of one upload, keyed by fingerprint."""

    name: str
    size: int
    type: str
    last_modified: int
    file_name: str
    params: UploadParams
    percent: float = 0.0
    checkpoint: Optional[Checkpoint] = None
    last_time: float = field(default_factory=time.time)
    token: Optional[Token] = None

    @classmethod
    def new(cls, identity: FileIdentity, fingerprint: str) -> "Track":
        # Provisional name; the token's file_name replaces it.
        file_name = f"upload-{fingerprint[:8]}-{secrets.token_hex(8)}"
        if identity.params.file_extension:
            file_name += f".{identity.params.file_extension}"
        return cls(
            name=identity.name,
            size=identity.size,
            type=identity.type,
            last_modified=identity.last_modified,
            file_name=file_name,
            params=identity.params,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "size": self.size,
            "type": self.type,
            "last_modified": self.last_modified,
            "file_name": self.file_name,
            "percent": self.percent,
            "checkpoint": self.checkpoint.to_dict() if self.checkpoint else None,
            "last_time": self.last_time,
            "params": self.params.to_dict(),
            "token": self.token.to_dict() if self.token else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Track":
        """Rebuild a track.

        Raises:
            KeyError, TypeError, ValueError: If ``data`` is not a valid track
        """
        checkpoint = data.get("checkpoint")
        token = data.get("token")
        return cls(
            name=data["name"],
            size=int(data["size"]),
            type=data["type"],
            last_modified=int(data["last_modified"]),
            file_name=data["file_name"],
            params=UploadParams.from_dict(data["params"]),
            percent=float(data["percent"]),
            checkpoint=Checkpoint.from_dict(checkpoint) if checkpoint else None,
            last_time=float(data["last_time"]),
            token=Token.from_dict(token) if token else None,
        )


@dataclass
class UploadIntent:
    """State of one in-flight attempt. Never persisted."""

    try_count: int
    identity: FileIdentity
    fingerprint: str
    track: Track
    resume: bool = False
