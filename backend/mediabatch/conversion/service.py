"""Image batch and video job orchestration over the shared media engine."""
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterable, Optional

from mediabatch.batch import BundleBuilder
from mediabatch.conversion.models import (
    BatchConfiguration,
    ConversionItem,
    ItemOutput,
    ProbeResult,
    VideoJob,
    media_type_for,
)
from mediabatch.conversion.planner import (
    PlanError,
    command_as_string,
    output_filename,
    plan_image,
    plan_video,
)
from mediabatch.conversion.probe import probe
from mediabatch.conversion.resize import round_half_up
from mediabatch.conversion.tracker import ItemTracker
from mediabatch.engine import EngineError, EngineUnavailableError, MediaEngine
from mediabatch.handles import HandleStore

logger = logging.getLogger("mediabatch.service")

VIDEO_INPUT_NAME = "input"

# Failures that belong to one item; anything else is a programming error
ITEM_FAILURES = (EngineError, EngineUnavailableError, PlanError, OSError)


@dataclass
class BatchResult:
    bundle: bytes
    entries: list[str] = field(default_factory=list)
    succeeded: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    duration_seconds: float = 0.0


class ConversionService:
    """Sole caller of the engine: one invocation at a time, virtual files removed after each item."""

    def __init__(self, engine: MediaEngine, handles: HandleStore):
        self._engine = engine
        self._handles = handles

    @property
    def engine(self) -> MediaEngine:
        return self._engine

    def _cleanup(self, *names: str) -> None:
        for name in names:
            try:
                self._engine.delete_file(name)
            except (EngineUnavailableError, OSError) as e:
                logger.warning("Could not delete virtual file %s: %s", name, e)

    @staticmethod
    def _fail(tracker: ItemTracker, item_id: str, message: str) -> None:
        try:
            tracker.fail(item_id, message)
        except KeyError:
            logger.info("Item %s was discarded during conversion", item_id)

    # Images

    def convert_images(
        self,
        tracker: ItemTracker,
        config: BatchConfiguration,
        item_ids: Optional[Iterable[str]] = None,
    ) -> Optional[BatchResult]:
        """
        Convert the selected items (all by default) in enqueue order and bundle the outputs.
        Returns None without doing anything if the engine is not ready or nothing is selected.
        One item's failure marks that item as error; the rest of the batch continues.
        """
        if not self._engine.ready:
            logger.warning("Image conversion requested but the engine is not ready")
            return None
        selected = tracker.select(item_ids)
        if not selected:
            logger.info("Image conversion requested with no items")
            return None

        started = time.monotonic()
        bundle = BundleBuilder()
        result = BatchResult(bundle=b"")
        with self._engine.lock:
            for item_id in selected:
                try:
                    item = tracker.start(item_id)
                except KeyError:
                    logger.info("Skipping %s: discarded before its turn", item_id)
                    continue
                entry = self._convert_image(tracker, item, config, bundle)
                if entry is None:
                    result.failed.append(item_id)
                else:
                    result.succeeded.append(item_id)
                    result.entries.append(entry)
            result.bundle = bundle.finalize()
        result.duration_seconds = time.monotonic() - started
        logger.info(
            "Image batch finished: %s converted, %s failed in %.2fs",
            len(result.succeeded),
            len(result.failed),
            result.duration_seconds,
        )
        return result

    def _convert_image(
        self,
        tracker: ItemTracker,
        item: ConversionItem,
        config: BatchConfiguration,
        bundle: BundleBuilder,
    ) -> Optional[str]:
        """Convert one started item. Returns its bundle entry name, or None if it failed."""
        item_id = item.item_id
        fmt = config.output_format
        input_name = f"input_{item_id}"
        output_name = f"output_{item_id}.{fmt}"
        try:
            self._engine.write_file(input_name, item.data)
            args = plan_image(item, config, input_name, output_name)
            logger.info("Converting %s: %s", item.filename, command_as_string(args))
            self._engine.exec(args)
            data = self._engine.read_file(output_name)
        except ITEM_FAILURES as e:
            logger.error("Conversion failed for %s: %s", item.filename, e)
            self._fail(tracker, item_id, str(e))
            return None
        finally:
            self._cleanup(input_name, output_name)

        filename = output_filename(item, fmt)
        if filename in bundle:
            path = Path(filename)
            filename = f"{path.stem}-{item_id}{path.suffix}"
        try:
            handle = self._handles.create(data, fmt)
        except OSError as e:
            logger.error("Could not store output for %s: %s", item.filename, e)
            self._fail(tracker, item_id, f"Could not store output: {e}")
            return None
        try:
            tracker.complete(item_id, ItemOutput(data=data, handle=handle, filename=filename, media_type=media_type_for(fmt)))
        except KeyError:
            logger.info("Item %s was discarded during conversion; output dropped", item_id)
            self._handles.revoke(handle)
            return None
        bundle.register(filename, data)
        logger.info("Converted %s -> %s (%s bytes)", item.filename, filename, len(data))
        return filename

    # Video

    def probe_video(self, data: bytes) -> ProbeResult:
        if not self._engine.ready:
            logger.warning("Probe requested but the engine is not ready")
            return ProbeResult()
        return probe(self._engine, data, VIDEO_INPUT_NAME)

    def convert_video(
        self,
        tracker: ItemTracker,
        job: VideoJob,
        on_progress: Optional[Callable[[int], None]] = None,
    ) -> VideoJob:
        """Run the single video job. Progress is reported as whole percentages 0-100."""
        if not self._engine.ready:
            logger.warning("Video conversion requested but the engine is not ready")
            return job
        item = job.item

        def handle_progress(fraction: float) -> None:
            job.progress = max(0, min(100, round_half_up(fraction * 100)))
            if on_progress:
                on_progress(job.progress)

        started = time.monotonic()
        with self._engine.lock:
            try:
                tracker.start(item.item_id)
            except KeyError:
                logger.info("Video %s was discarded before conversion", item.item_id)
                return job
            job.progress = 0
            fmt = job.config.output_format
            output_name = f"output.{fmt}"
            try:
                args = plan_video(item, job.config, VIDEO_INPUT_NAME, output_name)
                self._engine.write_file(VIDEO_INPUT_NAME, item.data)
                logger.info("Converting video %s: %s", item.filename, command_as_string(args))
                with self._engine.subscribe("progress", handle_progress):
                    self._engine.exec(args)
                data = self._engine.read_file(output_name)
            except ITEM_FAILURES as e:
                logger.error("Video conversion failed for %s: %s", item.filename, e)
                self._fail(tracker, item.item_id, str(e))
                return job
            finally:
                self._cleanup(VIDEO_INPUT_NAME, output_name)

            try:
                handle = self._handles.create(data, fmt)
            except OSError as e:
                logger.error("Could not store video output for %s: %s", item.filename, e)
                self._fail(tracker, item.item_id, f"Could not store output: {e}")
                return job
            try:
                tracker.complete(
                    item.item_id,
                    ItemOutput(data=data, handle=handle, filename=job.download_name, media_type=media_type_for(fmt)),
                )
            except KeyError:
                logger.info("Video %s was discarded during conversion; output dropped", item.item_id)
                self._handles.revoke(handle)
                return job
        job.progress = 100
        if on_progress:
            on_progress(100)
        logger.info(
            "Converted video %s -> %s (%s bytes) in %.2fs",
            item.filename,
            job.download_name,
            len(data),
            time.monotonic() - started,
        )
        return job
