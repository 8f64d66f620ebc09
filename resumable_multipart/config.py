"""Uploader configuration."""

import os
from dataclasses import dataclass, field
from typing import Mapping, Optional

from resumable_multipart.events import EventNotifier
from resumable_multipart.models import FileType, SubCategory
from resumable_multipart.policy import UseCache, always_resume
from resumable_multipart.storage import (
    DEFAULT_KEY_PREFIX,
    KeyValueStore,
    MemoryKeyValueStore,
    SQLiteKeyValueStore,
)
from resumable_multipart.token import HttpTokenProvider, TokenProvider
from resumable_multipart.transfer import S3MultipartTransfer, TransferFactory

ENV_PREFIX = "RESUMABLE_MULTIPART_"

DEFAULT_TOKEN_URL_BASE = "http://localhost:8080"
DEFAULT_TOKEN_URL_PATH = "/file/sts/token"


@dataclass
class UploaderOptions:
    """Options of an ``ObjectStorageUploader``.

    ``file_type``, ``sub_category`` and ``file_extension`` are the defaults
    for upload parameters not passed to ``upload()``.

    Attributes:
        token_url_base: Base URL of the token endpoint
        token_url_path: Path of the token endpoint
        token_provider: Obtains credentials for each attempt
        transfer_factory: Builds a transfer from a token
        max_try_count: Maximum number of retries after a failure
        retry_timeout: Seconds to wait before a retry
        expire_time: Seconds after which a stored track is swept
        use_cache: Decides whether a cached track is resumed
        monitor: Notifier that receives a copy of every event
        store: Persistent key-value substrate for tracks
        key_prefix: Namespace of track keys in ``store``
    """

    file_type: FileType = FileType.MISC
    sub_category: SubCategory = SubCategory.MISC
    file_extension: Optional[str] = None
    token_url_base: str = DEFAULT_TOKEN_URL_BASE
    token_url_path: str = DEFAULT_TOKEN_URL_PATH
    token_provider: TokenProvider = field(default_factory=HttpTokenProvider)
    transfer_factory: TransferFactory = S3MultipartTransfer
    max_try_count: int = 3
    retry_timeout: float = 3.0
    expire_time: float = 24 * 60 * 60
    use_cache: UseCache = always_resume
    monitor: Optional[EventNotifier] = None
    store: KeyValueStore = field(default_factory=MemoryKeyValueStore)
    key_prefix: str = DEFAULT_KEY_PREFIX

    def __post_init__(self):
        if self.max_try_count < 0:
            raise ValueError(f"max_try_count must be >= 0, got {self.max_try_count}")
        if self.retry_timeout < 0:
            raise ValueError(f"retry_timeout must be >= 0, got {self.retry_timeout}")
        if self.expire_time <= 0:
            raise ValueError(f"expire_time must be > 0, got {self.expire_time}")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, **overrides) -> "UploaderOptions":
        """Build options from ``RESUMABLE_MULTIPART_*`` environment variables.

        Recognized variables: ``TOKEN_URL_BASE``, ``TOKEN_URL_PATH``,
        ``MAX_TRY_COUNT``, ``RETRY_TIMEOUT``, ``EXPIRE_TIME`` and
        ``STORE_PATH`` (an SQLite database for tracks). Keyword arguments win
        over the environment.

        Raises:
            ValueError: If a numeric variable cannot be parsed
        """
        env = os.environ if environ is None else environ
        kwargs = {}

        def read(name: str) -> Optional[str]:
            value = env.get(f"{ENV_PREFIX}{name}")
            return value if value else None

        if read("TOKEN_URL_BASE"):
            kwargs["token_url_base"] = read("TOKEN_URL_BASE")
        if read("TOKEN_URL_PATH"):
            kwargs["token_url_path"] = read("TOKEN_URL_PATH")
        if read("MAX_TRY_COUNT"):
            kwargs["max_try_count"] = int(read("MAX_TRY_COUNT"))
        if read("RETRY_TIMEOUT"):
            kwargs["retry_timeout"] = float(read("RETRY_TIMEOUT"))
        if read("EXPIRE_TIME"):
            kwargs["expire_time"] = float(read("EXPIRE_TIME"))
        if read("STORE_PATH"):
            kwargs["store"] = SQLiteKeyValueStore(read("STORE_PATH"))

        kwargs.update(overrides)
        return cls(**kwargs)
