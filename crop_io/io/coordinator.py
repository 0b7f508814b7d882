"""Coordination of crop jobs on an asyncio event loop.

The `ExportCoordinator` runs at most one crop job at a time. Starting a new job
cancels the previous one and waits for it to be torn down before any work for
the new job begins. The export itself runs in a worker thread while progress is
sampled on the event loop, so progress callbacks always run on the caller's loop.

Example:
    >>> import asyncio
    >>> from crop_io import CropRect, ExportCoordinator
    >>> coordinator = ExportCoordinator()
    >>> result = asyncio.run(coordinator.crop("video.mp4", CropRect(0, 0, 640, 480)))
    >>> result.unwrap()
    PosixPath('/tmp/..._cropped.mov')
"""

from __future__ import annotations

import asyncio
import logging
import shutil
from concurrent.futures import Executor
from pathlib import Path
from typing import Callable, Optional, Sequence

import attrs

from crop_io.errors import (
    CropCancelledError,
    CropError,
    ExportFailedError,
    SourceFileNotFoundError,
)
from crop_io.io.asset import inspect_asset
from crop_io.io.composition import build_plan
from crop_io.io.export import ExportSession, ExportSettings
from crop_io.model.composition import CompositionPlan
from crop_io.model.job import CropJob, CropRect
from crop_io.model.state import CropResult, ExportState, ExportStatus

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float], None]


def _as_rect(rect: CropRect | Sequence[float]) -> CropRect:
    if isinstance(rect, CropRect):
        return rect
    return CropRect(*rect)


@attrs.define(eq=False)
class CropJobHandle:
    """The running job of a coordinator.

    Attributes:
        job: The crop request.
        plan: The composition plan of the job.
        session: The export session writing `output_path`.
        output_path: Temporary output file.
        on_progress: Progress callback of the caller, if any.
        task: Task resolving to the job's `CropResult`.
        poller: Task sampling the session's progress.
        callback_error: Exception raised by `on_progress`, if any.
    """

    job: CropJob
    plan: CompositionPlan
    session: ExportSession
    output_path: Path
    on_progress: Optional[ProgressCallback] = None
    task: Optional[asyncio.Task] = None
    poller: Optional[asyncio.Task] = None
    callback_error: Optional[BaseException] = None


class ExportCoordinator:
    """Run crop jobs one at a time.

    Args:
        settings: Export settings used for every job. Defaults to
            `ExportSettings()`.
        executor: Executor running the exports. Defaults to the event loop's
            default executor.
    """

    def __init__(
        self,
        settings: Optional[ExportSettings] = None,
        executor: Optional[Executor] = None,
    ):
        self.settings = settings if settings is not None else ExportSettings()
        self._executor = executor
        self._state = ExportState()
        self._job: Optional[CropJobHandle] = None
        self._lock = asyncio.Lock()
        # Bumped by every new request and by cancel(). A request whose generation
        # is stale when planning ends is not started.
        self._generation = 0

    @property
    def state(self) -> ExportState:
        """State of the current or last job. Do not modify."""
        return self._state

    @property
    def is_running(self) -> bool:
        """True while a job is active."""
        return self._job is not None

    async def crop(
        self,
        source: str | Path,
        rect: CropRect | Sequence[float],
        angle: float = 0.0,
        on_progress: Optional[ProgressCallback] = None,
    ) -> CropResult:
        """Crop a video.

        Any job that is still running is cancelled first. Its caller receives a
        `CropCancelledError`.

        Args:
            source: Path to the source video.
            rect: Crop rectangle in the displayed frame, as a `CropRect` or
                `(x, y, width, height)`. The origin is the top-left corner.
            angle: Rotation in radians. Positive values rotate clockwise on screen.
            on_progress: Called on the event loop with non-decreasing values in
                [0, 1] while the export runs, and with 1.0 when it succeeds.

        Returns:
            A `CropResult` holding the path of a new temporary file, or the error.
            Errors found before the export starts are returned without creating a
            file or calling `on_progress`.
        """
        try:
            source = Path(source)
            if not source.exists():
                raise SourceFileNotFoundError(f"Source file not found: {source}")
            job = CropJob(source=source, rect=_as_rect(rect), angle=angle)
        except CropError as exc:
            logger.info("Rejected crop of %s: %s", source, exc)
            return CropResult.failure(exc)

        self._generation += 1
        generation = self._generation

        async with self._lock:
            await self._cancel_job()
            if generation != self._generation:
                return self._superseded(job)

            loop = asyncio.get_running_loop()
            try:
                asset = await loop.run_in_executor(
                    self._executor, inspect_asset, job.source
                )
                plan = build_plan(job, asset, alignment=self.settings.pixel_alignment)
            except CropError as exc:
                logger.info("Could not plan crop of %s: %s", source, exc)
                return CropResult.failure(exc)

            if generation != self._generation:
                return self._superseded(job)
            handle = self._start(job, plan, on_progress)

        try:
            return await asyncio.shield(handle.task)
        except asyncio.CancelledError:
            logger.info("Caller cancelled crop of %s", source)
            handle.session.cancel_export()
            await asyncio.shield(handle.task)
            raise

    async def cancel(self):
        """Cancel the running job and wait until it is torn down.

        Requests that are still being planned are cancelled as well and never
        start exporting. Does nothing when no job is running or being planned.
        """
        self._generation += 1
        await self._cancel_job()

    async def _cancel_job(self):
        handle = self._job
        if handle is None:
            return
        logger.info("Cancelling crop of %s", handle.job.source)
        handle.session.cancel_export()
        await asyncio.shield(handle.task)

    def _superseded(self, job: CropJob) -> CropResult:
        logger.info("Crop of %s was cancelled before it started", job.source)
        result = CropResult.failure(
            CropCancelledError(f"Crop of {job.source} was cancelled.")
        )
        self._state.finish(result, ExportStatus.CANCELLED)
        self._state.reset()
        return result

    def _start(
        self,
        job: CropJob,
        plan: CompositionPlan,
        on_progress: Optional[ProgressCallback],
    ) -> CropJobHandle:
        output_path = self.settings.make_output_path()
        session = ExportSession(job.source, plan, output_path, settings=self.settings)
        handle = CropJobHandle(
            job=job,
            plan=plan,
            session=session,
            output_path=output_path,
            on_progress=on_progress,
        )
        self._job = handle
        self._state.start()
        logger.info(
            "Started crop of %s to %s (%dx%d)",
            job.source,
            output_path,
            *plan.render_size,
        )
        handle.poller = asyncio.create_task(self._poll(handle))
        handle.task = asyncio.create_task(self._run(handle))
        return handle

    def _report(self, handle: CropJobHandle, value: float):
        value = self._state.update_progress(value)
        if handle.on_progress is not None:
            handle.on_progress(value)

    async def _poll(self, handle: CropJobHandle):
        """Sample the session's progress until cancelled.

        An exception raised by the progress callback stops the export and fails the
        job with that exception as the underlying error.
        """
        while True:
            await asyncio.sleep(self.settings.progress_interval)
            try:
                self._report(handle, handle.session.progress)
            except Exception as exc:
                handle.callback_error = exc
                handle.session.cancel_export()
                return

    async def _stop_polling(self, handle: CropJobHandle):
        poller = handle.poller
        if not poller.done():
            poller.cancel()
        await asyncio.wait([poller])

    def _resolve(self, handle: CropJobHandle) -> tuple[CropResult, ExportStatus]:
        session = handle.session
        if handle.callback_error is not None:
            error = ExportFailedError(
                "Progress callback raised", underlying=handle.callback_error
            )
            return CropResult.failure(error), ExportStatus.FAILED
        if session.status is ExportStatus.COMPLETED:
            return CropResult.success(handle.output_path), ExportStatus.COMPLETED
        if session.status is ExportStatus.CANCELLED:
            error = CropCancelledError(f"Crop of {handle.job.source} was cancelled.")
            return CropResult.failure(error), ExportStatus.CANCELLED
        error = ExportFailedError(
            f"Export of {handle.job.source} failed", underlying=session.error
        )
        return CropResult.failure(error), ExportStatus.FAILED

    async def _run(self, handle: CropJobHandle) -> CropResult:
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(self._executor, handle.session.export)
        finally:
            await self._stop_polling(handle)

        result, status = self._resolve(handle)
        if result.ok:
            try:
                self._report(handle, 1.0)
            except Exception as exc:
                handle.callback_error = exc
                result, status = self._resolve(handle)

        if not result.ok:
            handle.output_path.unlink(missing_ok=True)

        self._state.finish(result, status)
        self._state.reset()
        if self._job is handle:
            self._job = None

        if result.ok:
            logger.info("Finished crop of %s: %s", handle.job.source, result.output_path)
        else:
            logger.info("Crop of %s ended: %s", handle.job.source, result.error)
        return result


def crop_video(
    source: str | Path,
    rect: CropRect | Sequence[float],
    angle: float = 0.0,
    output_path: Optional[str | Path] = None,
    settings: Optional[ExportSettings] = None,
    on_progress: Optional[ProgressCallback] = None,
) -> Path:
    """Crop a video and wait for the result.

    This runs a fresh `ExportCoordinator` on a new event loop and must not be
    called from a running loop. Use `ExportCoordinator.crop` there instead.

    Args:
        source: Path to the source video.
        rect: Crop rectangle in the displayed frame as a `CropRect` or
            `(x, y, width, height)`.
        angle: Rotation in radians. Positive values rotate clockwise on screen.
        output_path: Where to move the result. If None, the generated temporary
            file is returned.
        settings: Export settings. Defaults to `ExportSettings()`.
        on_progress: Called with the progress fraction while the export runs.

    Returns:
        Path to the cropped video.

    Raises:
        CropError: The typed error of the failed job.
    """

    async def _crop() -> CropResult:
        coordinator = ExportCoordinator(settings=settings)
        return await coordinator.crop(source, rect, angle=angle, on_progress=on_progress)

    path = asyncio.run(_crop()).unwrap()
    if output_path is not None:
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        path = Path(shutil.move(path.as_posix(), output_path.as_posix()))
    return path
