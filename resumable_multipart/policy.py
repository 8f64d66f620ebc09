"""Resume policy: decide what to do with a file that has a cached track."""

from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from resumable_multipart.models import ResumeDecision, Track, UploadFile


@dataclass
class UseCacheParam:
    """Argument passed to a ``use_cache`` decision function.

    Attributes:
        file: File about to be uploaded
        track: Track found in storage for that file
    """

    file: UploadFile
    track: Track


UseCache = Callable[[UseCacheParam], Awaitable[ResumeDecision]]


async def always_resume(param: UseCacheParam) -> ResumeDecision:
    """Default decision function: continue from the cached track."""
    return ResumeDecision.YES


async def decide_resume(
    file: UploadFile,
    cached_track: Optional[Track],
    resume: bool = False,
    use_cache: UseCache = always_resume,
) -> ResumeDecision:
    """Pick resume, restart or cancel for an upload.

    Args:
        file: File about to be uploaded
        cached_track: Track found in storage, if any
        resume: Skip the decision function and resume unconditionally
        use_cache: Decision function consulted otherwise; may ask a human

    Returns:
        ResumeDecision.NO when nothing is cached, YES when ``resume`` is set,
        otherwise whatever ``use_cache`` answers
    """
    if cached_track is None:
        return ResumeDecision.NO
    if resume:
        return ResumeDecision.YES
    decision = await use_cache(UseCacheParam(file=file, track=cached_track))
    return ResumeDecision(decision)
