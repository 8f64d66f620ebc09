"""Test suite for ObjectStorageUploader."""

import asyncio
import os
import shutil
import tempfile

import pytest

from resumable_multipart import (
    Checkpoint,
    EventKind,
    EventNotifier,
    FileType,
    LocalTransfer,
    MemoryKeyValueStore,
    ObjectStorageUploader,
    ResumeDecision,
    SQLiteKeyValueStore,
    Token,
    TokenProvider,
    Track,
    TrackStore,
    Transfer,
    TransferResult,
    UploadFile,
    UploadParams,
    UploadState,
)
from resumable_multipart.exceptions import TokenRequestError, TransferFailed


class FakeTokenProvider(TokenProvider):
    """Issues a new token, with a new remote name, on every call."""

    def __init__(self, failures: int = 0):
        self.calls = []
        self.failures = failures

    async def get_token(self, params, url):
        self.calls.append((params, url))
        if self.failures > 0:
            self.failures -= 1
            raise TokenRequestError("endpoint down", status_code=503)
        n = len(self.calls)
        return Token(
            region="us-east-1",
            bucket="bucket",
            security_token=f"sts-{n}",
            access_key_id=f"id-{n}",
            access_key_secret=f"secret-{n}",
            file_name=f"uploads/{n}.{params.file_extension}",
        )


class RecordingTransfer(Transfer):
    """Transfer that records its arguments and reports two progress ticks."""

    def __init__(self, token, fail=False):
        self.token = token
        self.fail = fail
        self.calls = []
        self.cancelled = False

    async def multipart_upload(self, remote_name, file, checkpoint=None, on_progress=None):
        self.calls.append((remote_name, file, checkpoint))
        if self.fail:
            raise TransferFailed("connection reset")
        if on_progress:
            on_progress(0.5, Checkpoint(payload="half"))
            on_progress(1.0, Checkpoint(payload="full"))
        return TransferResult(
            request_urls=[f"https://{self.token.bucket}.example.com/{remote_name}?uploadId=abc"],
            raw={"ok": True},
        )

    def cancel(self):
        self.cancelled = True


class FlakyTransfer(LocalTransfer):
    """LocalTransfer that fails after sending ``fail_after`` parts."""

    def __init__(self, token, root, part_size, fail_after=None):
        super().__init__(token, root, part_size=part_size)
        self.fail_after = fail_after
        self.sent = 0

    async def _upload_part(self, state, part_number, data):
        if self.fail_after is not None and self.sent >= self.fail_after:
            raise TransferFailed("connection reset")
        self.sent += 1
        return await super()._upload_part(state, part_number, data)


class BlockingTokenProvider(FakeTokenProvider):
    """Holds the ``block_on``-th token request until ``release`` is set."""

    def __init__(self, block_on):
        super().__init__()
        self.block_on = block_on
        self.entered = None
        self.release = None

    async def get_token(self, params, url):
        if len(self.calls) + 1 == self.block_on:
            self.entered.set()
            await self.release.wait()
        return await super().get_token(params, url)


class LateCompletionTransfer(RecordingTransfer):
    """RecordingTransfer that runs ``on_complete`` just before returning."""

    def __init__(self, token, on_complete):
        super().__init__(token)
        self.on_complete = on_complete

    async def multipart_upload(self, remote_name, file, checkpoint=None, on_progress=None):
        result = await super().multipart_upload(remote_name, file, checkpoint, on_progress)
        self.on_complete()
        return result


def record_events(uploader):
    events = []
    uploader.subscribe(events.append)
    return events


def kinds(events, *only):
    return [e.kind for e in events if not only or e.kind in only]


class TestObjectStorageUploader:
    """Tests for the upload engine."""

    @pytest.fixture
    def temp_dir(self):
        """Create a temporary directory for tests."""
        temp_dir = tempfile.mkdtemp()
        yield temp_dir
        shutil.rmtree(temp_dir)

    @pytest.fixture
    def test_file(self, temp_dir):
        """Create a 1MB test file."""
        file_path = os.path.join(temp_dir, "clip.mp4")
        with open(file_path, "wb") as f:
            f.write(os.urandom(1024 * 1024))
        return file_path

    @pytest.fixture
    def bucket_root(self, temp_dir):
        root = os.path.join(temp_dir, "bucket-root")
        os.makedirs(root)
        return root

    @pytest.fixture
    def tokens(self):
        return FakeTokenProvider()

    def make_uploader(self, tokens, transfer_factory, **overrides):
        overrides.setdefault("retry_timeout", 0)
        return ObjectStorageUploader(
            token_provider=tokens,
            transfer_factory=transfer_factory,
            **overrides,
        )

    def test_successful_upload(self, test_file, tokens):
        """Test a clean upload emits the full event sequence."""
        transfers = []

        def factory(token):
            transfers.append(RecordingTransfer(token))
            return transfers[-1]

        uploader = self.make_uploader(tokens, factory)
        events = record_events(uploader)

        url = asyncio.run(uploader.upload(test_file))

        assert url == "https://bucket.example.com/uploads/1.mp4"
        assert kinds(events) == [
            EventKind.BEGIN,
            EventKind.BEFORE_GET_TOKEN,
            EventKind.AFTER_GET_TOKEN,
            EventKind.PREPARE,
            EventKind.PROGRESS,
            EventKind.PROGRESS,
            EventKind.DONE,
            EventKind.END,
        ]
        done = [e for e in events if e.kind is EventKind.DONE][0]
        assert done.url == url
        assert done.result.raw == {"ok": True}
        assert [e.percent for e in events if e.kind is EventKind.PROGRESS] == [50.0, 100.0]

        remote_name, file, checkpoint = transfers[0].calls[0]
        assert remote_name == "uploads/1.mp4"
        assert file.path == test_file
        assert checkpoint is None
        assert uploader.tracks.substrate.keys() == []
        assert uploader.state is UploadState.IDLE

    def test_token_request_uses_resolved_params(self, test_file, tokens):
        """Test options and file name fill unset upload parameters."""
        uploader = self.make_uploader(
            tokens,
            RecordingTransfer,
            file_type=FileType.VIDEO,
            token_url_base="https://api.example.com/",
            token_url_path="/sts/token",
        )

        asyncio.run(uploader.upload(test_file, UploadParams(file_extension=".MOV")))

        params, url = tokens.calls[0]
        assert url == "https://api.example.com/sts/token"
        assert params.file_type is FileType.VIDEO
        assert params.file_extension == "mov"

    def test_retry_bound(self, test_file, tokens):
        """Test an always-failing transfer is attempted max_try_count + 1 times."""
        transfers = []

        def factory(token):
            transfers.append(RecordingTransfer(token, fail=True))
            return transfers[-1]

        uploader = self.make_uploader(tokens, factory, max_try_count=2)
        events = record_events(uploader)

        url = asyncio.run(uploader.upload(test_file))

        assert url is None
        assert len(transfers) == 3
        assert kinds(events, EventKind.FAIL, EventKind.BEFORE_RETRY, EventKind.END) == [
            EventKind.FAIL,
            EventKind.BEFORE_RETRY,
            EventKind.FAIL,
            EventKind.BEFORE_RETRY,
            EventKind.FAIL,
            EventKind.END,
        ]
        retries = [e for e in events if e.kind is EventKind.BEFORE_RETRY]
        assert [(e.try_count, e.max_try_count) for e in retries] == [(1, 2), (2, 2)]
        assert isinstance(events[-2].exception, TransferFailed)
        # A failed chain keeps its track so a later upload can resume.
        assert len(uploader.tracks.substrate.keys()) == 1

    def test_retry_vetoed_by_observer(self, test_file, tokens):
        """Test canceling beforeRetry stops the chain with an end event."""
        transfers = []

        def factory(token):
            transfers.append(RecordingTransfer(token, fail=True))
            return transfers[-1]

        uploader = self.make_uploader(tokens, factory, max_try_count=3)
        events = record_events(uploader)

        def veto(event):
            event.canceled = True

        uploader.subscribe(veto, EventKind.BEFORE_RETRY)
        asyncio.run(uploader.upload(test_file))

        assert len(transfers) == 1
        assert kinds(events, EventKind.FAIL, EventKind.BEFORE_RETRY, EventKind.END) == [
            EventKind.FAIL,
            EventKind.BEFORE_RETRY,
            EventKind.END,
        ]

    def test_token_failure_is_retried(self, test_file):
        """Test token acquisition failures count against max_try_count."""
        tokens = FakeTokenProvider(failures=1)
        uploader = self.make_uploader(tokens, RecordingTransfer, max_try_count=1)
        events = record_events(uploader)

        url = asyncio.run(uploader.upload(test_file))

        assert url == "https://bucket.example.com/uploads/2.mp4"
        fail = [e for e in events if e.kind is EventKind.FAIL][0]
        assert isinstance(fail.exception, TokenRequestError)

    def test_end_to_end_fails_twice_then_succeeds(self, temp_dir, bucket_root, tokens):
        """Test a 10MB upload that fails twice and then completes."""
        file_path = os.path.join(temp_dir, "big.bin")
        content = os.urandom(10 * 1024 * 1024)
        with open(file_path, "wb") as f:
            f.write(content)

        plan = [2, 2, None]
        transfers = []

        def factory(token):
            transfers.append(
                FlakyTransfer(token, bucket_root, part_size=1024 * 1024, fail_after=plan.pop(0))
            )
            return transfers[-1]

        uploader = self.make_uploader(tokens, factory, max_try_count=3)
        events = record_events(uploader)

        url = asyncio.run(uploader.upload(file_path))

        assert kinds(
            events,
            EventKind.BEGIN,
            EventKind.FAIL,
            EventKind.BEFORE_RETRY,
            EventKind.DONE,
            EventKind.END,
        ) == [
            EventKind.BEGIN,
            EventKind.FAIL,
            EventKind.BEFORE_RETRY,
            EventKind.FAIL,
            EventKind.BEFORE_RETRY,
            EventKind.DONE,
            EventKind.END,
        ]
        percents = [e.percent for e in events if e.kind is EventKind.PROGRESS]
        assert percents == sorted(percents)
        assert percents[-1] == 100.0

        # Retries continue the multipart session of the first attempt.
        assert url.startswith("file://")
        assert url.endswith("/bucket/uploads/1.bin")
        with open(transfers[0].object_path("uploads/1.bin"), "rb") as f:
            assert f.read() == content
        assert sum(t.sent for t in transfers) == 10
        assert uploader.tracks.substrate.keys() == []

    def test_resume_reuses_checkpoint_and_token(self, test_file, tokens):
        """Test a cached track at 42% is resumed without a new token."""
        transfers = []

        def factory(token):
            transfers.append(RecordingTransfer(token))
            return transfers[-1]

        decisions = []

        async def use_cache(param):
            decisions.append(param.track.percent)
            return ResumeDecision.YES

        uploader = self.make_uploader(tokens, factory, use_cache=use_cache)
        file = UploadFile.from_path(test_file)
        params = uploader.resolve_params(file)
        identity = file.identity(params)
        fingerprint = uploader.fingerprinter.get_fingerprint(identity)

        cached_token = Token("us-east-1", "bucket", "sts", "id", "secret", "uploads/cached.mp4")
        track = Track.new(identity, fingerprint)
        track.file_name = cached_token.file_name
        track.token = cached_token
        track.percent = 42.0
        track.checkpoint = Checkpoint(payload='{"parts": 3}')
        uploader.tracks.put(track, fingerprint)

        url = asyncio.run(uploader.upload(file))

        assert decisions == [42.0]
        assert tokens.calls == []
        assert transfers[0].token == cached_token
        remote_name, live_file, checkpoint = transfers[0].calls[0]
        assert remote_name == "uploads/cached.mp4"
        assert live_file is file
        assert checkpoint == Checkpoint(payload='{"parts": 3}')
        assert url == "https://bucket.example.com/uploads/cached.mp4"

    def test_resume_policy_restart(self, test_file, tokens):
        """Test answering NO starts over with a fresh track."""
        transfers = []

        def factory(token):
            transfers.append(RecordingTransfer(token))
            return transfers[-1]

        async def use_cache(param):
            return ResumeDecision.NO

        uploader = self.make_uploader(tokens, factory, use_cache=use_cache)
        file = UploadFile.from_path(test_file)
        fingerprint = uploader.fingerprinter.get_fingerprint(
            file.identity(uploader.resolve_params(file))
        )
        stale = Track.new(file.identity(uploader.resolve_params(file)), fingerprint)
        stale.checkpoint = Checkpoint(payload="stale")
        uploader.tracks.put(stale, fingerprint)

        asyncio.run(uploader.upload(file))

        assert len(tokens.calls) == 1
        assert transfers[0].calls[0][2] is None

    def test_resume_policy_cancel(self, test_file, tokens):
        """Test answering CANCEL makes upload a silent no-op."""

        async def use_cache(param):
            return ResumeDecision.CANCEL

        uploader = self.make_uploader(tokens, RecordingTransfer, use_cache=use_cache)
        file = UploadFile.from_path(test_file)
        identity = file.identity(uploader.resolve_params(file))
        fingerprint = uploader.fingerprinter.get_fingerprint(identity)
        uploader.tracks.put(Track.new(identity, fingerprint), fingerprint)
        events = record_events(uploader)

        assert asyncio.run(uploader.upload(file)) is None
        assert events == []
        assert tokens.calls == []
        assert uploader.tracks.get(fingerprint) is not None

    def test_pause_and_resume(self, test_file, bucket_root, tokens):
        """Test pausing mid-transfer and resuming from the stored checkpoint."""
        transfers = []

        def factory(token):
            transfers.append(LocalTransfer(token, bucket_root, part_size=100 * 1024))
            return transfers[-1]

        uploader = self.make_uploader(tokens, factory)
        events = record_events(uploader)
        paused = []

        def pause_at_30(event):
            if event.percent >= 30 and not paused:
                paused.append(event.percent)
                uploader.pause()

        uploader.subscribe(pause_at_30, EventKind.PROGRESS)

        async def scenario():
            first = await uploader.upload(test_file)
            assert first is None
            assert uploader.is_paused
            assert uploader.state is UploadState.PAUSED
            assert transfers[0].cancelled

            stored = uploader.tracks.get(uploader.tracks.substrate.keys()[0][len(uploader.tracks.prefix):])
            assert stored.percent == paused[0]
            progress_before = len([e for e in events if e.kind is EventKind.PROGRESS])

            second = await uploader.resume()
            resumed = [e for e in events if e.kind is EventKind.PROGRESS][progress_before:]
            return second, resumed

        url, resumed = asyncio.run(scenario())

        assert url is not None
        assert not uploader.is_paused
        assert len(tokens.calls) == 1
        assert len(transfers) == 2
        assert resumed[0].percent > paused[0]
        paused_changes = [e.is_paused for e in events if e.kind is EventKind.IS_PAUSED_CHANGED]
        assert paused_changes == [True, False]
        with open(transfers[1].object_path("uploads/1.mp4"), "rb") as f, open(test_file, "rb") as g:
            assert f.read() == g.read()

    def test_pause_and_resume_is_idempotent(self, test_file, tokens):
        """Test repeated pause calls and a resume without pause are no-ops."""
        uploader = self.make_uploader(tokens, RecordingTransfer)
        events = record_events(uploader)

        uploader.pause()
        assert asyncio.run(uploader.resume()) is None
        assert events == []

        def pause_twice(event):
            uploader.pause()
            uploader.pause()

        uploader.subscribe(pause_twice, EventKind.PREPARE)
        asyncio.run(uploader.upload(test_file))

        assert kinds(events, EventKind.IS_PAUSED_CHANGED) == [EventKind.IS_PAUSED_CHANGED]
        assert kinds(events, EventKind.PROGRESS) == []

    def test_stop_twice(self, test_file, bucket_root, tokens):
        """Test stop emits a single end event and forgets the track."""

        def factory(token):
            return LocalTransfer(token, bucket_root, part_size=100 * 1024)

        uploader = self.make_uploader(tokens, factory)
        events = record_events(uploader)

        def stop_at_20(event):
            if event.percent >= 20:
                uploader.stop()
                uploader.stop()

        uploader.subscribe(stop_at_20, EventKind.PROGRESS)

        assert asyncio.run(uploader.upload(test_file)) is None
        assert kinds(events, EventKind.END) == [EventKind.END]
        assert kinds(events, EventKind.DONE, EventKind.FAIL) == []
        assert uploader.tracks.substrate.keys() == []
        assert uploader.state is UploadState.IDLE

        uploader.stop()
        assert kinds(events, EventKind.END) == [EventKind.END]

    def test_stop_while_paused(self, test_file, bucket_root, tokens):
        """Test stop after pause ends the chain and removes the track."""

        def factory(token):
            return LocalTransfer(token, bucket_root, part_size=100 * 1024)

        uploader = self.make_uploader(tokens, factory)
        events = record_events(uploader)
        uploader.subscribe(lambda e: uploader.pause(), EventKind.PROGRESS)

        asyncio.run(uploader.upload(test_file))
        assert len(uploader.tracks.substrate.keys()) == 1

        uploader.stop()
        assert kinds(events, EventKind.END) == [EventKind.END]
        assert uploader.tracks.substrate.keys() == []
        assert asyncio.run(uploader.resume()) is None

    def test_resume_after_restart(self, temp_dir, test_file, bucket_root, tokens):
        """Test a new uploader instance continues a track persisted by another."""
        db_path = os.path.join(temp_dir, "tracks.db")

        def factory(token):
            return LocalTransfer(token, bucket_root, part_size=100 * 1024)

        first = self.make_uploader(tokens, factory, store=SQLiteKeyValueStore(db_path))
        first.subscribe(lambda e: e.percent >= 50 and first.pause(), EventKind.PROGRESS)
        asyncio.run(first.upload(test_file))

        second = self.make_uploader(tokens, factory, store=SQLiteKeyValueStore(db_path))
        events = record_events(second)
        url = asyncio.run(second.upload(test_file))

        assert url.endswith("/bucket/uploads/1.mp4")
        assert len(tokens.calls) == 1
        percents = [e.percent for e in events if e.kind is EventKind.PROGRESS]
        assert percents[0] > 50
        assert second.tracks.substrate.keys() == []

    def test_upload_sweeps_expired_tracks(self, test_file, tokens):
        """Test upload removes tracks older than expire_time."""
        store = MemoryKeyValueStore()
        tracks = TrackStore(store)
        file = UploadFile(name="old.bin", size=1, last_modified=1)
        old = Track.new(file.identity(UploadParams(FileType.MISC)), "oldprint")
        old.last_time = 1.0
        tracks.put(old, "oldprint")

        uploader = self.make_uploader(tokens, RecordingTransfer, store=store, expire_time=60)
        asyncio.run(uploader.upload(test_file))

        assert tracks.get("oldprint") is None

    def test_monitor_and_failing_handler(self, test_file, tokens):
        """Test a raising handler doesn't break the upload and the monitor sees events."""
        monitor = EventNotifier()
        forwarded = []
        monitor.subscribe(forwarded.append)

        uploader = self.make_uploader(tokens, RecordingTransfer, monitor=monitor)

        def broken(event):
            raise RuntimeError("observer bug")

        uploader.subscribe(broken)
        url = asyncio.run(uploader.upload(test_file))

        assert url is not None
        assert forwarded[0].kind is EventKind.BEGIN
        assert forwarded[-1].kind is EventKind.END

    def test_stop_from_fail_handler(self, test_file, tokens):
        """Test stopping inside a fail handler ends the chain without a retry offer."""
        transfers = []

        def factory(token):
            transfers.append(RecordingTransfer(token, fail=True))
            return transfers[-1]

        uploader = self.make_uploader(tokens, factory, max_try_count=3)
        events = record_events(uploader)
        uploader.subscribe(lambda e: uploader.stop(), EventKind.FAIL)

        assert asyncio.run(uploader.upload(test_file)) is None

        assert len(transfers) == 1
        assert kinds(events)[-3:] == [EventKind.FAIL, EventKind.IS_PAUSED_CHANGED, EventKind.END]
        assert kinds(events, EventKind.BEFORE_RETRY) == []
        assert uploader.tracks.substrate.keys() == []

    def test_pause_in_before_retry(self, test_file, bucket_root, tokens):
        """Test pausing before a retry skips it and resume continues the checkpoint."""
        plan = [3, None]
        transfers = []

        def factory(token):
            transfers.append(
                FlakyTransfer(token, bucket_root, part_size=100 * 1024, fail_after=plan.pop(0))
            )
            return transfers[-1]

        uploader = self.make_uploader(tokens, factory, max_try_count=3)
        events = record_events(uploader)
        uploader.subscribe(lambda e: uploader.pause(), EventKind.BEFORE_RETRY)

        async def scenario():
            first = await uploader.upload(test_file)
            assert first is None
            assert uploader.is_paused
            assert len(transfers) == 1
            return await uploader.resume()

        url = asyncio.run(scenario())

        assert url.endswith("/bucket/uploads/1.mp4")
        assert len(tokens.calls) == 1
        assert [t.sent for t in transfers] == [3, 8]
        assert kinds(events, EventKind.BEFORE_RETRY) == [EventKind.BEFORE_RETRY]
        with open(transfers[1].object_path("uploads/1.mp4"), "rb") as f, open(test_file, "rb") as g:
            assert f.read() == g.read()

    def test_pause_while_fetching_token(self, test_file, bucket_root):
        """Test pausing during a token request stops the attempt before any transfer."""
        tokens = BlockingTokenProvider(block_on=2)
        plan = [3, None]
        transfers = []

        def factory(token):
            transfers.append(
                FlakyTransfer(token, bucket_root, part_size=100 * 1024, fail_after=plan.pop(0))
            )
            return transfers[-1]

        uploader = self.make_uploader(tokens, factory, max_try_count=3)
        events = record_events(uploader)

        async def scenario():
            tokens.entered = asyncio.Event()
            tokens.release = asyncio.Event()
            task = asyncio.ensure_future(uploader.upload(test_file))
            await tokens.entered.wait()
            uploader.pause()
            tokens.release.set()
            first = await task
            assert first is None
            assert uploader.state is UploadState.PAUSED
            assert len(transfers) == 1
            return await uploader.resume()

        url = asyncio.run(scenario())

        assert url.endswith("/bucket/uploads/1.mp4")
        assert len(tokens.calls) == 2
        assert [t.sent for t in transfers] == [3, 8]
        assert kinds(events, EventKind.AFTER_GET_TOKEN) == [EventKind.AFTER_GET_TOKEN]

    def test_pause_during_completion(self, test_file, tokens):
        """Test a pause that lands while the transfer completes suppresses done."""
        transfers = []
        uploader = None

        def factory(token):
            if transfers:
                transfers.append(RecordingTransfer(token))
            else:
                transfers.append(LateCompletionTransfer(token, lambda: uploader.pause()))
            return transfers[-1]

        uploader = self.make_uploader(tokens, factory)
        events = record_events(uploader)

        async def scenario():
            first = await uploader.upload(test_file)
            assert first is None
            assert uploader.is_paused
            assert kinds(events, EventKind.DONE, EventKind.END) == []
            assert len(uploader.tracks.substrate.keys()) == 1
            return await uploader.resume()

        url = asyncio.run(scenario())

        assert url == "https://bucket.example.com/uploads/1.mp4"
        assert kinds(events, EventKind.DONE, EventKind.END) == [EventKind.DONE, EventKind.END]
        assert uploader.tracks.substrate.keys() == []
        assert uploader.state is UploadState.IDLE

    def test_raising_use_cache_cancels(self, test_file, tokens):
        """Test a use_cache function that raises makes upload a no-op."""

        async def use_cache(param):
            raise RuntimeError("dialog crashed")

        uploader = self.make_uploader(tokens, RecordingTransfer, use_cache=use_cache)
        file = UploadFile.from_path(test_file)
        identity = file.identity(uploader.resolve_params(file))
        fingerprint = uploader.fingerprinter.get_fingerprint(identity)
        uploader.tracks.put(Track.new(identity, fingerprint), fingerprint)
        events = record_events(uploader)

        assert asyncio.run(uploader.upload(file)) is None
        assert events == []
        assert tokens.calls == []
        assert uploader.tracks.get(fingerprint) is not None


    def test_upload_missing_file(self, tokens):
        """Test uploading a non-existent path raises FileNotFoundError."""
        uploader = self.make_uploader(tokens, RecordingTransfer)
        with pytest.raises(FileNotFoundError):
            asyncio.run(uploader.upload("/nonexistent/file.bin"))
