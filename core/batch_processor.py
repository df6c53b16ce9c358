# core/batch_processor.py

import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence

from tqdm import tqdm

from core.embedding import EmbeddingGenerator, GridSamplingEmbedder
from core.errors import (ComparisonError, DecodeError, DetectorError,
                         OutOfMemory)
from core.face_locator import DEFAULT_PADDING, FaceLocator, extract_region
from core.image_decoder import BoundedImageDecoder
from core.interfaces import (ImageDecoder, MediaStore, ProgressCallback,
                             ResultStore)
from core.labeling import ImageLabeler
from core.models import (AnnotationKind, FaceRecord, Label, MediaItem,
                         ProcessingStage)
from core.perceptual_hasher import PerceptualHasher
from core.text_recognition import TextRecognizer, normalize_text
from utils.logging_config import PerformanceLogger
from utils.performance_monitor import MemoryMonitor

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 50
MAX_PROCESSING_DIMENSION = 1024
BATCH_DELAY_SECONDS = 0.1
YIELD_EVERY = 5

# Per-item failures that never abort a run
RECOVERABLE_ERRORS = (DecodeError, DetectorError, ComparisonError)


class ProcessType(Enum):
    """What a run computes"""
    ALL = "all"
    FACES = "faces"
    LABELS = "labels"
    DUPLICATES = "duplicates"
    OCR = "ocr"


STAGES_BY_TYPE = {
    ProcessType.ALL: (ProcessingStage.FACES, ProcessingStage.LABELS,
                      ProcessingStage.DUPLICATES, ProcessingStage.TEXT),
    ProcessType.FACES: (ProcessingStage.FACES,),
    ProcessType.LABELS: (ProcessingStage.LABELS,),
    ProcessType.DUPLICATES: (ProcessingStage.DUPLICATES,),
    ProcessType.OCR: (ProcessingStage.TEXT,),
}


class RunState(Enum):
    IDLE = "idle"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


class RunOutcome(Enum):
    """What the scheduler should do next"""
    SUCCESS = "success"
    FAILURE = "failure"    # terminal, do not retry
    RETRY = "retry"        # re-invoke later; skip logic resumes the backlog
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class ProgressUpdate:
    done: int
    total: int
    batch: int


class CancellationToken:
    """Cooperative cancellation flag polled at yield points"""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self):
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()


@dataclass
class RunReport:
    state: RunState
    outcome: RunOutcome
    total: int = 0
    processed: int = 0
    skipped: int = 0
    failed: int = 0
    stage_failures: int = 0
    error: Optional[str] = None
    timings: Dict[str, dict] = field(default_factory=dict)

    @property
    def done(self) -> int:
        return self.processed + self.skipped + self.failed


class BatchProcessingOrchestrator:
    """
    Background pass over the media library.

    Items are processed strictly one at a time so that a single decoded,
    downsampled bitmap is alive at any moment. For every item the run
    skips stages that already have results (unless forced), decodes the
    image at a bounded size, runs the remaining stages and persists each
    stage atomically before releasing the image.

    Per-item failures (decode errors, detector errors, invalid comparison
    input) are logged and skipped. Memory exhaustion ends the run as a
    terminal failure; any other error ends it with a retry outcome and
    the external scheduler is expected to invoke the run again.

    Not reentrant: one orchestrator runs at most one pass at a time, and
    concurrent passes over the same library from different orchestrators
    must be prevented by the caller.
    """

    def __init__(self,
                 store: MediaStore,
                 results: ResultStore,
                 decoder: Optional[ImageDecoder] = None,
                 hasher: Optional[PerceptualHasher] = None,
                 locator: Optional[FaceLocator] = None,
                 embedder: Optional[EmbeddingGenerator] = None,
                 labeler: Optional[ImageLabeler] = None,
                 text_recognizer: Optional[TextRecognizer] = None,
                 batch_size: int = DEFAULT_BATCH_SIZE,
                 max_dimension: int = MAX_PROCESSING_DIMENSION,
                 yield_every: int = YIELD_EVERY,
                 batch_delay: float = BATCH_DELAY_SECONDS,
                 face_padding: int = DEFAULT_PADDING,
                 memory_monitor: Optional[MemoryMonitor] = None,
                 sleep: Callable[[float], None] = time.sleep,
                 show_progress: bool = False):
        if batch_size <= 0:
            raise ValueError(f"batch_size must be positive: {batch_size}")

        self.store = store
        self.results = results
        self.decoder = decoder or BoundedImageDecoder()
        self.hasher = hasher or PerceptualHasher()
        self.locator = locator
        self.embedder = embedder or GridSamplingEmbedder()
        self.labeler = labeler
        self.text_recognizer = text_recognizer
        self.batch_size = batch_size
        self.max_dimension = max_dimension
        self.yield_every = max(1, yield_every)
        self.batch_delay = batch_delay
        self.face_padding = face_padding
        self.memory_monitor = memory_monitor or MemoryMonitor()
        self.sleep = sleep
        self.show_progress = show_progress

        self._state = RunState.IDLE
        self._state_lock = threading.Lock()

    @property
    def state(self) -> RunState:
        return self._state

    def close(self):
        """Release detector, labeler and OCR engine resources"""
        for engine in (self.locator, self.labeler, self.text_recognizer):
            if engine is not None and hasattr(engine, 'close'):
                engine.close()

    def available_stages(self, process_type: ProcessType) -> List[ProcessingStage]:
        """Requested stages that have an engine configured"""
        engines = {
            ProcessingStage.FACES: self.locator,
            ProcessingStage.LABELS: self.labeler,
            ProcessingStage.DUPLICATES: self.hasher,
            ProcessingStage.TEXT: self.text_recognizer,
        }
        return [stage for stage in STAGES_BY_TYPE[process_type]
                if engines[stage] is not None]

    def run(self,
            item_id: Optional[int] = None,
            process_type: ProcessType = ProcessType.ALL,
            force: bool = False,
            progress_callback: Optional[ProgressCallback] = None,
            cancel_token: Optional[CancellationToken] = None) -> RunReport:
        """
        Process one item (item_id) or every item in the library.

        Returns a RunReport; errors never propagate except a reentrant call,
        which raises RuntimeError.
        """
        with self._state_lock:
            if self._state is RunState.RUNNING:
                raise RuntimeError("A processing run is already active")
            self._state = RunState.RUNNING

        cancel_token = cancel_token or CancellationToken()
        perf = PerformanceLogger()
        report = RunReport(state=RunState.RUNNING, outcome=RunOutcome.SUCCESS)

        stages = self.available_stages(process_type)
        missing = set(STAGES_BY_TYPE[process_type]) - set(stages)
        for stage in sorted(missing, key=lambda s: s.value):
            logger.info("No engine configured for stage '%s'; skipping it", stage.value)

        logger.info("Processing run started: item=%s, type=%s, batch_size=%d, force=%s",
                    item_id, process_type.value, self.batch_size, force)

        try:
            items = self._load_items(item_id)
            report.total = len(items)
            cancelled = self._process_items(items, stages, force, report, perf,
                                            progress_callback, cancel_token)
            if cancelled:
                report.state = RunState.CANCELLED
                report.outcome = RunOutcome.CANCELLED
                logger.info("Processing run cancelled after %d of %d items",
                            report.done, report.total)
            else:
                report.state = RunState.SUCCEEDED
                report.outcome = RunOutcome.SUCCESS
                logger.info("Processing run finished: %d processed, %d skipped, "
                            "%d failed of %d", report.processed, report.skipped,
                            report.failed, report.total)
        except (OutOfMemory, MemoryError) as e:
            report.state = RunState.FAILED
            report.outcome = RunOutcome.FAILURE
            report.error = str(e) or type(e).__name__
            logger.error("Out of memory - not retrying: %s", report.error)
        except Exception as e:
            report.state = RunState.FAILED
            report.outcome = RunOutcome.RETRY
            report.error = str(e) or type(e).__name__
            logger.exception("Processing run failed - will retry")
        finally:
            report.timings = perf.summary()
            self._state = report.state

        return report

    def _load_items(self, item_id: Optional[int]) -> List[MediaItem]:
        if item_id is None:
            return sorted(self.store.list_all_items(), key=lambda item: item.id)

        item = self.store.get_item(item_id)
        if item is None:
            logger.warning("Media item %s not found", item_id)
            return []
        return [item]

    def _process_items(self, items: Sequence[MediaItem],
                       stages: Sequence[ProcessingStage],
                       force: bool,
                       report: RunReport,
                       perf: PerformanceLogger,
                       progress_callback,
                       cancel_token: CancellationToken) -> bool:
        """Walk items batch by batch; returns True if cancelled"""
        total = len(items)
        batches = [items[i:i + self.batch_size] for i in range(0, total, self.batch_size)]

        with tqdm(total=total, desc="Processing media",
                  disable=not self.show_progress) as progress_bar:
            for batch_index, batch in enumerate(batches):
                logger.debug("Processing batch %d (%d items)", batch_index, len(batch))

                for item in batch:
                    if cancel_token.is_cancelled:
                        return True

                    outcome = self._process_item(item, stages, force, report, perf)
                    if outcome == 'processed':
                        report.processed += 1
                    elif outcome == 'skipped':
                        report.skipped += 1
                    else:
                        report.failed += 1

                    progress_bar.update(1)
                    if progress_callback is not None:
                        progress_callback(ProgressUpdate(report.done, total, batch_index))

                    # Cooperative yield, also a cancellation checkpoint
                    if report.done % self.yield_every == 0:
                        self.sleep(self.batch_delay)

                if batch_index < len(batches) - 1:
                    if cancel_token.is_cancelled:
                        return True
                    self.sleep(self.batch_delay * 2)

        return False

    def _pending_stages(self, item: MediaItem, stages: Sequence[ProcessingStage],
                        force: bool) -> List[ProcessingStage]:
        if force:
            return list(stages)
        return [stage for stage in stages
                if not self.results.get_stage_result(item.id, stage)]

    def _process_item(self, item: MediaItem,
                      stages: Sequence[ProcessingStage],
                      force: bool,
                      report: RunReport,
                      perf: PerformanceLogger) -> str:
        pending = self._pending_stages(item, stages, force)
        if not pending:
            logger.debug("Item %s already processed, skipping", item.id,
                         extra={'item_id': item.id})
            return 'skipped'

        if self.memory_monitor.under_pressure():
            raise OutOfMemory(f"Memory limit exceeded before item {item.id}")

        start = time.perf_counter()
        try:
            image = self.decoder.decode_bounded(item.path, self.max_dimension)
        except DecodeError as e:
            logger.warning("Skipping item %s: %s", item.id, e,
                           extra={'item_id': item.id})
            return 'failed'
        perf.log_metric('decode', time.perf_counter() - start, item_id=item.id)

        failed_stages = 0
        try:
            for stage in pending:
                start = time.perf_counter()
                try:
                    self._run_stage(stage, item, image, force)
                except RECOVERABLE_ERRORS as e:
                    failed_stages += 1
                    logger.warning("Stage '%s' failed for item %s: %s",
                                   stage.value, item.id, e,
                                   extra={'item_id': item.id, 'stage': stage.value})
                    continue
                perf.log_metric(stage.value, time.perf_counter() - start,
                                item_id=item.id)
        finally:
            # Release the bitmap before moving to the next item
            image.close()
            del image

        report.stage_failures += failed_stages
        return 'failed' if failed_stages else 'processed'

    def _run_stage(self, stage: ProcessingStage, item: MediaItem, image, force: bool):
        if stage is ProcessingStage.FACES:
            self._process_faces(item, image)
        elif stage is ProcessingStage.LABELS:
            self._process_labels(item, image, force)
        elif stage is ProcessingStage.DUPLICATES:
            self._process_duplicate(item, image)
        elif stage is ProcessingStage.TEXT:
            self._process_text(item, image, force)

    def _process_faces(self, item: MediaItem, image):
        records = []
        for region in self.locator.detect(image):
            crop = extract_region(image, region.bounding_box, self.face_padding)
            if crop is None:
                continue
            try:
                embedding = self.embedder.embed(crop)
            finally:
                crop.close()

            records.append(FaceRecord(
                media_id=item.id,
                bounding_box=region.bounding_box,
                embedding=embedding,
                confidence=region.confidence
            ))

        self.results.save_faces(item.id, records)
        logger.debug("Item %s: stored %d faces", item.id, len(records))

    def _process_labels(self, item: MediaItem, image, force: bool):
        labels = [
            Label(text=label.text, confidence=label.confidence,
                  kind=AnnotationKind.LABEL, media_id=item.id)
            for label in self.labeler.label(image)
        ]
        self.results.save_labels(item.id, labels, replace=force)
        logger.debug("Item %s: stored %d labels: %s", item.id, len(labels),
                     [label.text for label in labels])

    def _process_duplicate(self, item: MediaItem, image):
        perceptual_hash = str(self.hasher.hash(image))
        self.results.save_hash(item.id, perceptual_hash)
        item.perceptual_hash = perceptual_hash

    def _process_text(self, item: MediaItem, image, force: bool):
        recognized = self.text_recognizer.recognize(image)

        texts = []
        if self.text_recognizer.is_significant(recognized):
            text = normalize_text(recognized.full_text)
            if text:
                texts.append(Label(text=text, confidence=1.0,
                                   kind=AnnotationKind.TEXT, media_id=item.id))

        self.results.save_text(item.id, texts, replace=force)
