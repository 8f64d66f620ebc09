#!/usr/bin/env python3
"""Example upload to S3 with temporary credentials from a token endpoint."""

import asyncio
import json
import os
import sys

from resumable_multipart import (
    EventKind,
    FileType,
    HttpTokenProvider,
    ObjectStorageUploader,
    ResumeDecision,
    S3MultipartTransfer,
    UploaderOptions,
    UploadParams,
)


async def ask_user(param):
    """Ask before continuing an upload found in the track store."""
    answer = input(
        f"{param.file.name} was {param.track.percent:.0f}% uploaded. Resume? [y/n/c] "
    ).strip().lower()
    return {"y": ResumeDecision.YES, "c": ResumeDecision.CANCEL}.get(answer, ResumeDecision.NO)


def main():
    """Run the S3 example."""
    if len(sys.argv) < 3:
        print("Usage: python s3_example.py <token_url_base> <file_path> [headers]")
        print(
            "Example: python s3_example.py https://api.example.com /path/to/video.mp4 "
            '{"Authorization": "Bearer your-token-here"}'
        )
        sys.exit(1)

    token_url_base = sys.argv[1]
    file_path = sys.argv[2]
    headers = json.loads(sys.argv[3]) if len(sys.argv) > 3 else {}

    if not os.path.exists(file_path):
        print(f"Error: File not found: {file_path}")
        sys.exit(1)

    options = UploaderOptions.from_env(
        token_url_base=token_url_base,
        token_provider=HttpTokenProvider(headers=headers),
        transfer_factory=S3MultipartTransfer.factory(
            part_size=8 * 1024 * 1024, endpoint_url=os.environ.get("S3_ENDPOINT_URL")
        ),
        use_cache=ask_user,
    )
    uploader = ObjectStorageUploader(options)
    uploader.subscribe(lambda e: print(f"\r{e.percent:.1f}%", end=""), EventKind.PROGRESS)
    uploader.subscribe(
        lambda e: print(f"\nRetry {e.try_count}/{e.max_try_count}"), EventKind.BEFORE_RETRY
    )

    try:
        url = asyncio.run(uploader.upload(file_path, UploadParams(file_type=FileType.VIDEO)))
    except KeyboardInterrupt:
        print("\nInterrupted; run again to resume")
        sys.exit(1)
    print(f"\nUploaded to {url}" if url else "\nUpload did not complete")


if __name__ == "__main__":
    main()
