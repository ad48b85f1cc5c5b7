"""Progress reporting primitives shared by the encoders and the orchestrator."""

from typing import Awaitable, Callable, Optional

# Receives (percent within the reporter's own 0-100 range, stage, current quality)
ProgressCallback = Callable[[float, str, Optional[str]], Awaitable[None]]


async def _noop(percent: float, stage: str, quality: Optional[str] = None) -> None:
    return None


def noop_progress() -> ProgressCallback:
    """Return a progress callback that discards every report."""
    return _noop


def scaled(callback: ProgressCallback, start: float, end: float) -> ProgressCallback:
    """Map a 0-100 progress callback onto the ``[start, end]`` window of another.

    Reports are clamped to the window so an inner component overshooting 100
    never pushes the overall progress past ``end``.

    Args:
        callback: Outer callback receiving the overall percentage.
        start: Overall percentage that corresponds to inner 0.
        end: Overall percentage that corresponds to inner 100.

    Returns:
        A callback for the inner component.
    """

    async def report(percent: float, stage: str, quality: Optional[str] = None) -> None:
        clamped = min(max(percent, 0.0), 100.0)
        await callback(start + (end - start) * clamped / 100.0, stage, quality)

    return report
