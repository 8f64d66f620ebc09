#!/usr/bin/env python3
"""Example of a resumable upload into a local directory.

Start ``token_server_example.py`` first, then:

    python uploader_example.py /path/to/file.bin ./storage

The upload pauses at 50% and resumes from its stored track.
"""

import asyncio
import logging
import os
import sys

from resumable_multipart import (
    EventKind,
    LocalTransfer,
    ObjectStorageUploader,
    SQLiteKeyValueStore,
    UploaderOptions,
)


def progress_bar(event):
    """Display upload progress."""
    bar_length = 50
    filled = int(bar_length * event.percent / 100)
    bar = "=" * filled + "-" * (bar_length - filled)
    print(f"\rProgress: [{bar}] {event.percent:.1f}%", end="")
    if event.percent >= 100:
        print()


async def run(file_path: str, root: str):
    options = UploaderOptions.from_env(
        transfer_factory=LocalTransfer.factory(root, part_size=256 * 1024),
        store=SQLiteKeyValueStore("tracks.db"),
        retry_timeout=1.0,
    )
    uploader = ObjectStorageUploader(options)
    uploader.subscribe(progress_bar, EventKind.PROGRESS)
    uploader.subscribe(lambda e: print(f"\nPaused: {e.is_paused}"), EventKind.IS_PAUSED_CHANGED)
    uploader.subscribe(lambda e: print(f"\nAttempt failed: {e.exception}"), EventKind.FAIL)

    def pause_halfway(event):
        if event.percent >= 50 and not getattr(pause_halfway, "done", False):
            pause_halfway.done = True
            uploader.pause()

    unsubscribe = uploader.subscribe(pause_halfway, EventKind.PROGRESS)

    url = await uploader.upload(file_path)
    if url is None and uploader.is_paused:
        unsubscribe()
        print("Resuming...")
        url = await uploader.resume()

    if url:
        print(f"Upload complete: {url}")
    else:
        print("Upload did not complete")


def main():
    """Run the uploader example."""
    if len(sys.argv) < 3:
        print("Usage: python uploader_example.py <file_path> <storage_dir>")
        sys.exit(1)

    file_path = sys.argv[1]
    if not os.path.exists(file_path):
        print(f"Error: File not found: {file_path}")
        sys.exit(1)

    logging.basicConfig(level=logging.INFO, format="%(levelname)s - %(name)s - %(message)s")
    asyncio.run(run(file_path, sys.argv[2]))


if __name__ == "__main__":
    main()
