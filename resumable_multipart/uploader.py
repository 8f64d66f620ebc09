"""Resumable multipart uploader for object storage."""

import asyncio
import dataclasses
import functools
import logging
import os
import re
import time
from typing import Optional, Union

from resumable_multipart.config import UploaderOptions
from resumable_multipart.events import (
    AfterGetTokenEvent,
    BeforeGetTokenEvent,
    BeforeRetryEvent,
    BeginEvent,
    DoneEvent,
    EndEvent,
    EventHandler,
    EventKind,
    EventNotifier,
    FailEvent,
    PausedChangedEvent,
    PrepareEvent,
    ProgressEvent,
)
from resumable_multipart.exceptions import UploadCancelled
from resumable_multipart.fingerprint import Fingerprint
from resumable_multipart.models import (
    Checkpoint,
    ResumeDecision,
    Token,
    Track,
    UploadFile,
    UploadIntent,
    UploadParams,
    UploadState,
    get_extension,
)
from resumable_multipart.policy import decide_resume
from resumable_multipart.storage import TrackStore
from resumable_multipart.token import join_url
from resumable_multipart.transfer import Transfer, TransferResult

logger = logging.getLogger(__name__)

_UPLOAD_ID_QUERY = re.compile(r"\?uploadId=.*")


def public_url(result: TransferResult) -> str:
    """Derive the public URL of an object from its transfer result."""
    url = result.request_urls[0] if result.request_urls else ""
    return _UPLOAD_ID_QUERY.sub("", url or "")


class ObjectStorageUploader:
    """Chunked, resumable upload of large files to object storage.

    Progress is persisted per file fingerprint on every tick, so an upload
    interrupted by a crash or a network failure continues where it stopped.
    Failed attempts are retried ``max_try_count`` times; observers may veto
    a retry through the ``beforeRetry`` event.

    Events: begin, prepare, beforeGetToken, afterGetToken, progress, done,
    fail, beforeRetry, isPausedChanged, end.

    Example:
        >>> uploader = ObjectStorageUploader(max_try_count=3)
        >>> uploader.subscribe(lambda e: print(e.percent), EventKind.PROGRESS)
        >>> url = await uploader.upload("video.mp4")
    """

    def __init__(self, options: Optional[UploaderOptions] = None, **overrides):
        """Initialize the uploader.

        Args:
            options: Uploader options (default: UploaderOptions())
            **overrides: Individual option fields replacing those in ``options``
        """
        options = options or UploaderOptions()
        if overrides:
            options = dataclasses.replace(options, **overrides)
        self.options = options
        self.fingerprinter = Fingerprint()
        self.tracks = TrackStore(options.store, prefix=options.key_prefix)
        self.events = EventNotifier(monitor=options.monitor)

        self._state = UploadState.IDLE
        self._active: Optional[UploadIntent] = None
        self._transfer: Optional[Transfer] = None
        self._file: Optional[UploadFile] = None
        self._params: Optional[UploadParams] = None
        self._fingerprint: Optional[str] = None
        self._is_paused = False
        self._has_begun = False

    @property
    def is_paused(self) -> bool:
        return self._is_paused

    @property
    def state(self) -> UploadState:
        return self._state

    def subscribe(self, handler: EventHandler, kind: Optional[EventKind] = None):
        """Register an event handler. See ``EventNotifier.subscribe``."""
        return self.events.subscribe(handler, kind)

    def resolve_params(self, file: UploadFile, params: Optional[UploadParams] = None) -> UploadParams:
        """Fill unset parameters from the options and the file name."""
        params = params or UploadParams()
        ext = params.file_extension or self.options.file_extension or get_extension(file.name)
        ext = (ext or "").lower()
        if ext.startswith("."):
            ext = ext[1:]
        return UploadParams(
            file_type=params.file_type or self.options.file_type,
            sub_category=params.sub_category or self.options.sub_category,
            file_extension=ext,
        )

    async def upload(
        self,
        file: Union[UploadFile, str, os.PathLike],
        params: Optional[UploadParams] = None,
        *,
        resume: bool = False,
    ) -> Optional[str]:
        """Upload a file, resuming earlier progress when the policy allows.

        Failures are reported through events, never raised. A ``use_cache``
        function that raises is logged and treated as a cancel.

        Args:
            file: File to upload, or a path to it
            params: Upload parameters; unset fields use the option defaults
            resume: Resume from the stored track without consulting ``use_cache``

        Returns:
            Public URL of the uploaded object, or None if the upload was
            cancelled, paused, stopped or failed
        """
        if not isinstance(file, UploadFile):
            file = UploadFile.from_path(os.fspath(file))

        self.tracks.sweep_expired(self.options.expire_time)

        params = self.resolve_params(file, params)
        identity = file.identity(params)
        fingerprint = self.fingerprinter.get_fingerprint(identity)
        cached_track = self.tracks.get(fingerprint)

        try:
            decision = await decide_resume(file, cached_track, resume, self.options.use_cache)
        except Exception:
            logger.exception(f"Resume policy failed for {file.name}; upload cancelled")
            return None
        if decision is ResumeDecision.CANCEL:
            logger.info(f"Upload of {file.name} cancelled by resume policy")
            return None

        if decision is ResumeDecision.YES:
            # The live file is handed to the transfer next to the checkpoint.
            track = cached_track
            resume = True
            logger.info(f"Resuming {file.name} from {track.percent:.1f}%")
        else:
            track = Track.new(identity, fingerprint)
            resume = False

        intent = UploadIntent(
            try_count=0,
            identity=identity,
            fingerprint=fingerprint,
            track=track,
            resume=resume,
        )
        return await self._run(file, intent)

    def pause(self) -> None:
        """Pause the running upload. Calling it again has no effect."""
        if self._active is None or self._is_paused:
            return
        self._active = None
        if self._transfer is not None:
            self._transfer.cancel()
        self._state = UploadState.PAUSED
        self._set_paused(True)
        logger.info(f"Upload of {self._file.name if self._file else 'file'} paused")

    async def resume(self) -> Optional[str]:
        """Resume a paused upload from its stored track.

        Returns:
            Same as ``upload()``; None without a paused upload
        """
        if not self._is_paused or self._file is None:
            return None
        return await self.upload(self._file, self._params, resume=True)

    def stop(self) -> None:
        """Stop the upload and forget its progress. Safe to call repeatedly."""
        self.pause()
        self._end()
        self._clean()
        self._state = UploadState.IDLE

    def _is_active(self, intent: UploadIntent) -> bool:
        return self._active is intent

    async def _run(self, file: UploadFile, intent: UploadIntent) -> Optional[str]:
        """Drive attempts until success, cancellation or a terminal failure."""
        max_try_count = self.options.max_try_count

        while True:
            try:
                return await self._attempt(file, intent)
            except UploadCancelled:
                logger.debug(f"Attempt {intent.try_count} of {file.name} cancelled")
                return None
            except Exception as e:
                if not self._is_active(intent):
                    logger.debug(f"Ignoring failure of inactive attempt: {e}")
                    return None
                failure = e

            self._transfer = None
            logger.warning(f"Upload attempt {intent.try_count} of {file.name} failed: {failure}")
            self.events.notify(FailEvent(file=file, exception=failure))
            if not self._is_active(intent):
                return None

            next_try_count = intent.try_count + 1
            if next_try_count > max_try_count:
                logger.error(f"Giving up on {file.name} after {next_try_count} attempt(s)")
                self._finish(UploadState.FAILED)
                return None

            self._state = UploadState.RETRY_PENDING
            event = BeforeRetryEvent(
                file=file, try_count=next_try_count, max_try_count=max_try_count
            )
            self.events.notify(event)
            if not self._is_active(intent):
                return None
            if event.canceled:
                logger.info(f"Retry of {file.name} vetoed by observer")
                self._finish(UploadState.FAILED)
                return None

            self._state = UploadState.RETRY_WAIT
            logger.info(
                f"Retrying {file.name} in {self.options.retry_timeout}s "
                f"({next_try_count}/{max_try_count})"
            )
            await asyncio.sleep(self.options.retry_timeout)
            if not self._is_active(intent):
                return None

            intent = UploadIntent(
                try_count=next_try_count,
                identity=intent.identity,
                fingerprint=intent.fingerprint,
                track=intent.track,
                resume=False,
            )

    async def _attempt(self, file: UploadFile, intent: UploadIntent) -> str:
        self._active = intent
        track = intent.track

        if intent.try_count == 0:
            self._file = file
            self.events.notify(BeginEvent(file=file))
            self._set_paused(False)
            self._has_begun = True
            self._params = track.params
            self._fingerprint = intent.fingerprint

        token = track.token if intent.resume else None
        if token is None:
            token = await self._fetch_token(file, intent)

        transfer = self._transfer = self.options.transfer_factory(token)
        self._state = UploadState.TRANSFERRING
        self.events.notify(PrepareEvent(file=file))
        if not self._is_active(intent):
            raise UploadCancelled("Paused before transfer")

        result = await transfer.multipart_upload(
            track.file_name,
            file,
            checkpoint=track.checkpoint,
            on_progress=functools.partial(self._on_progress, file, intent),
        )
        if not self._is_active(intent):
            # Completion raced a pause; the track stays for resume().
            raise UploadCancelled("Paused while completing")

        url = public_url(result)
        self._state = UploadState.DONE
        logger.info(f"Upload of {file.name} done: {url}")
        self.events.notify(DoneEvent(file=file, url=url, result=result))
        self.tracks.delete(intent.fingerprint)
        self._set_paused(False)
        self._finish(UploadState.DONE)
        self._clean()
        return url

    async def _fetch_token(self, file: UploadFile, intent: UploadIntent) -> Token:
        """Request a token and persist it into the track right away."""
        track = intent.track
        url = join_url(self.options.token_url_base, self.options.token_url_path)

        self._state = UploadState.FETCHING_TOKEN
        self.events.notify(BeforeGetTokenEvent(file=file))
        token = await self.options.token_provider.get_token(track.params, url)
        if not self._is_active(intent):
            raise UploadCancelled("Paused while fetching token")

        track.file_name = token.file_name
        track.token = token
        self.tracks.put(track, intent.fingerprint)
        self.events.notify(AfterGetTokenEvent(file=file, token=token))
        return token

    def _on_progress(
        self, file: UploadFile, intent: UploadIntent, fraction: float, checkpoint: Checkpoint
    ) -> None:
        if not self._is_active(intent):
            return
        percent = fraction * 100
        track = intent.track
        track.percent = percent
        track.checkpoint = checkpoint
        track.last_time = time.time()
        self.tracks.put(track, intent.fingerprint)
        logger.debug(f"{file.name}: {percent:.1f}%")
        self.events.notify(ProgressEvent(file=file, percent=percent, checkpoint=checkpoint))

    def _finish(self, state: UploadState) -> None:
        """End the chain; the stored track is kept unless the caller removes it."""
        self._state = state
        self._active = None
        self._transfer = None
        self._end()
        self._state = UploadState.IDLE

    def _end(self) -> None:
        if self._has_begun:
            self._has_begun = False
            self.events.notify(EndEvent(file=self._file))

    def _clean(self) -> None:
        if self._fingerprint:
            self.tracks.delete(self._fingerprint)
        self._fingerprint = None
        self._file = None
        self._params = None

    def _set_paused(self, value: bool) -> None:
        if value != self._is_paused:
            self._is_paused = value
            self.events.notify(PausedChangedEvent(file=self._file, is_paused=value))
