"""
eCFR Analyzer - Import Orchestrator

Drives the four-step pipeline:

    1. AGENCIES    agency forest -> agencies + CFR references
    2. TITLES      title registry -> titles
    3. CONTENT     title XML for today (worker pool) -> title_contents
    4. HISTORICAL  current snapshot + monthly backfill

Runs are started in the background by the API (start) or synchronously
by the CLI and scheduler (run). Only one run can be active at a time;
a second trigger raises ImportAlreadyRunning. Each run carries a
CancelToken that is checked between agencies, titles and months.

Progress is reported through the StatusStore. Within content download
it tracks titles processed; at step boundaries it is recomputed as
completed steps / 4, so it is not strictly monotonic.
"""

from __future__ import annotations

import logging
import queue
import re
import threading
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Callable, Optional
from uuid import UUID

from ..config import Settings, get_settings
from ..core.errors import EcfrAnalyzerError, ImportAlreadyRunning, ImportCancelled, SourceError
from ..models import Title
from ..repository import Repository
from ..utils.context import run_id_context
from .agency_tree import AgencyTree
from .checksum_service import document_checksum
from .content_strategy import ContentDownloader
from .ecfr_client import EcfrClient, parse_source_date
from .historical_service import HistoricalService
from .import_status import CancelToken, ImportStatus, ImportStep, StatusStore

logger = logging.getLogger(__name__)

_TAG_RE = re.compile(r"<[^>]*>")
_WS_RE = re.compile(r"\s+")


def count_words(content: str) -> int:
    """Count whitespace-separated tokens after replacing every <...> tag with a space."""
    text = _WS_RE.sub(" ", _TAG_RE.sub(" ", content).strip())
    return len(text.split()) if text else 0


RUN_PLANS: dict[str, tuple[ImportStep, ...]] = {
    "agencies": (ImportStep.AGENCIES,),
    "titles": (ImportStep.TITLES, ImportStep.CONTENT, ImportStep.HISTORICAL),
    "historical": (ImportStep.HISTORICAL,),
    "all": tuple(ImportStep),
}

COMPLETION_MESSAGES = {
    "agencies": "Agency import completed",
    "titles": "Title import completed",
    "historical": "Historical snapshots completed",
    "all": "All imports completed",
}


@dataclass
class ImportRun:
    run_id: str
    kind: str
    token: CancelToken = field(default_factory=CancelToken)
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    agency_tree: Optional[AgencyTree] = None


class ImportService:
    def __init__(
        self,
        repository: Repository,
        client: EcfrClient,
        downloader: ContentDownloader,
        historical: HistoricalService,
        settings: Settings | None = None,
        *,
        today: Optional[Callable[[], date]] = None,
    ) -> None:
        settings = settings or get_settings()
        self.repository = repository
        self.client = client
        self.downloader = downloader
        self.historical = historical
        self.workers = settings.ECFR_CONTENT_WORKERS
        self.store = StatusStore()
        self._today = today or (lambda: datetime.now(timezone.utc).date())
        self._current: Optional[ImportRun] = None
        self._thread: Optional[threading.Thread] = None

    # =========================================================================
    # Run lifecycle
    # =========================================================================

    @property
    def status(self) -> ImportStatus:
        return self.store.get()

    def _begin(self, kind: str) -> ImportRun:
        if kind not in RUN_PLANS:
            raise ValueError(f"Unknown import kind: {kind}")
        run = ImportRun(run_id=uuid.uuid4().hex[:12], kind=kind)
        if not self.store.try_begin_run(run.run_id, RUN_PLANS[kind]):
            raise ImportAlreadyRunning(self.store.active_run)
        self._current = run
        logger.info(f"Import run {run.run_id} ({kind}) started")
        return run

    def start(self, kind: str) -> str:
        """Start a run on a background thread and return its run id."""
        run = self._begin(kind)
        self._thread = threading.Thread(
            target=self._execute, args=(run,), name=f"import-{kind}-{run.run_id}", daemon=True
        )
        self._thread.start()
        return run.run_id

    def run(self, kind: str) -> ImportStatus:
        """Run synchronously in the calling thread and return the final status."""
        self._execute(self._begin(kind))
        return self.status

    def join(self, timeout: Optional[float] = None) -> None:
        """Wait for the background run started by start(), if any."""
        if self._thread is not None:
            self._thread.join(timeout)

    def request_cancel(self) -> bool:
        """Ask the active run to stop at its next checkpoint. False when idle."""
        run = self._current
        if run is None or self.store.active_run != run.run_id:
            return False
        run.token.cancel()
        self.store.update(cancel_requested=True, current_step="Cancelling import")
        logger.info(f"Cancellation requested for import run {run.run_id}")
        return True

    def _execute(self, run: ImportRun) -> None:
        with run_id_context(run.run_id):
            final: dict = {}
            try:
                if run.kind == "agencies":
                    self.import_agencies(run)
                elif run.kind == "titles":
                    self.import_titles(run)
                elif run.kind == "historical":
                    self.import_historical(run)
                else:
                    self.load_all_data(run)
                final["current_step"] = COMPLETION_MESSAGES[run.kind]
            except ImportCancelled:
                logger.warning(f"Import run {run.run_id} cancelled")
                final.update(current_step="Import cancelled", error="Import cancelled")
            except EcfrAnalyzerError as exc:
                logger.error(f"Import run {run.run_id} failed: {exc}")
                final["error"] = str(exc)
            except Exception as exc:
                logger.exception(f"Import run {run.run_id} crashed")
                final.update(current_step="Import failed", error=f"{type(exc).__name__}: {exc}")
            finally:
                self.store.end_run(run.run_id, **final)
                elapsed = (datetime.now(timezone.utc) - run.started_at).total_seconds()
                logger.info(f"Import run {run.run_id} finished in {elapsed:.1f}s")

    # =========================================================================
    # Status helpers
    # =========================================================================

    def _set_overall_step(self, step: ImportStep, description: str) -> None:
        self.store.update(overall_step=int(step), current_step=description, is_loading=True, progress=0)

    def _fail(self, description: str, exc: Exception) -> None:
        self.store.update(current_step=description, progress=0, error=str(exc))

    def _increment_progress(self) -> None:
        def _apply(status: ImportStatus) -> dict:
            current = status.current_title + 1
            total = status.total_titles
            return {
                "current_title": current,
                "progress": current * 100 // total if total else status.progress,
                "current_step": f"Downloading Title {current} of {total}",
            }

        status = self.store.mutate(_apply)
        logger.debug(f"Content progress: {status.current_title}/{status.total_titles} ({status.progress}%)")

    # =========================================================================
    # Full run
    # =========================================================================

    def load_all_data(self, run: ImportRun) -> None:
        """Agencies, then titles (which chain content and historical)."""
        logger.info("Starting full data load")
        self.import_agencies(run)
        self.import_titles(run)

    # =========================================================================
    # Step 1: agencies
    # =========================================================================

    def import_agencies(self, run: ImportRun) -> None:
        token = run.token
        self._set_overall_step(ImportStep.AGENCIES, "Importing agencies")
        try:
            tree = self.client.fetch_agencies()
        except SourceError as exc:
            self._fail("Failed to import agencies", exc)
            raise
        run.agency_tree = tree

        slug_to_id: dict[str, UUID] = {}

        # Pass 1: top-level agencies
        total = len(tree.roots)
        for position, index in enumerate(tree.roots, start=1):
            token.raise_if_cancelled()
            record = tree.nodes[index].record
            try:
                agency = self.repository.upsert_agency(record.name, record.short_name, record.slug, None)
            except EcfrAnalyzerError as exc:
                logger.error(f"Error creating agency {record.slug}: {exc}")
                continue
            slug_to_id[agency.slug] = agency.id
            self.store.update(
                current_step=f"Importing agencies ({position}/{total})",
                progress=position * 100 // total,
            )

        # Pass 2: nested agencies, parents before children
        for node in tree.descendants():
            token.raise_if_cancelled()
            parent = tree.parent_of(node)
            parent_id = slug_to_id.get(parent.slug) if parent else None
            if parent_id is None:
                logger.warning(f"Skipping agency {node.slug}: parent was not imported")
                continue
            record = node.record
            try:
                agency = self.repository.upsert_agency(record.name, record.short_name, record.slug, parent_id)
            except EcfrAnalyzerError as exc:
                logger.error(f"Error creating child agency {record.slug}: {exc}")
                continue
            slug_to_id[agency.slug] = agency.id

        # Pass 3: CFR references for every imported agency
        linked = self._link_references(tree, slug_to_id, token)
        logger.info(f"Imported {len(slug_to_id)} agencies with {linked} CFR references")
        self.store.mark_step_complete(ImportStep.AGENCIES)

    def _link_references(
        self, tree: AgencyTree, slug_to_id: Optional[dict[str, UUID]], token: CancelToken
    ) -> int:
        if slug_to_id is None:
            slug_to_id = {a.slug: a.id for a in self.repository.list_agencies()}
        titles_by_number = {t.number: t for t in self.repository.list_titles()}

        linked = 0
        unknown: set[int] = set()
        for node in tree.walk():
            token.raise_if_cancelled()
            agency_id = slug_to_id.get(node.slug)
            if agency_id is None:
                continue
            for ref in node.record.cfr_references:
                title = titles_by_number.get(ref.title)
                if title is None:
                    unknown.add(ref.title)
                    continue
                try:
                    self.repository.add_reference(agency_id, title.id, ref.chapter or "")
                    linked += 1
                except EcfrAnalyzerError as exc:
                    logger.error(f"Error linking {node.slug} to title {ref.title}: {exc}")

        if unknown:
            logger.info(f"Skipped references to {len(unknown)} unknown titles: {sorted(unknown)}")
        return linked

    # =========================================================================
    # Step 2: titles (chains content + historical)
    # =========================================================================

    def import_titles(self, run: ImportRun) -> None:
        token = run.token
        self._set_overall_step(ImportStep.TITLES, "Importing titles")
        try:
            registry = self.client.fetch_titles()
        except SourceError as exc:
            self._fail("Failed to import titles", exc)
            raise

        total = len(registry.titles)
        for position, record in enumerate(registry.titles, start=1):
            token.raise_if_cancelled()
            try:
                self.repository.upsert_title(
                    record.number,
                    record.name,
                    record.reserved,
                    parse_source_date(record.latest_amended_on),
                    parse_source_date(record.latest_issue_date),
                    parse_source_date(record.up_to_date_as_of),
                )
            except EcfrAnalyzerError as exc:
                logger.error(f"Error creating title {record.number}: {exc}")
                continue
            self.store.update(
                current_step=f"Importing titles ({position}/{total})",
                progress=position * 100 // total,
            )

        logger.info(f"Imported {total} titles")
        self.store.mark_step_complete(ImportStep.TITLES)

        # Titles may not have existed when this run linked agency references
        if run.agency_tree is not None:
            self._link_references(run.agency_tree, None, token)

        self.import_content(run)
        self.import_historical(run)

    # =========================================================================
    # Step 3: content
    # =========================================================================

    def import_content(self, run: ImportRun) -> None:
        token = run.token
        self._set_overall_step(ImportStep.CONTENT, "Importing content")
        self.store.update(current_step="Preparing content download", progress=0)

        try:
            titles = self.repository.list_titles(include_reserved=False)
        except EcfrAnalyzerError as exc:
            self._fail("Failed to fetch titles", exc)
            raise

        self.store.update(total_titles=len(titles), current_title=0)
        content_date = self._today()

        work: "queue.Queue[Optional[Title]]" = queue.Queue()
        for title in titles:
            work.put(title)
        for _ in range(self.workers):
            work.put(None)

        logger.info(f"Starting content import with {self.workers} workers for {len(titles)} titles")
        threads = [
            threading.Thread(
                target=self._content_worker,
                args=(worker_id, work, content_date, run),
                name=f"content-worker-{worker_id}",
                daemon=True,
            )
            for worker_id in range(self.workers)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        token.raise_if_cancelled()
        self.store.update(current_step="Content import completed", progress=100)
        self.store.mark_step_complete(ImportStep.CONTENT)

    def _content_worker(
        self, worker_id: int, work: "queue.Queue[Optional[Title]]", content_date: date, run: ImportRun
    ) -> None:
        with run_id_context(run.run_id):
            logger.debug(f"Worker {worker_id} started")
            while True:
                title = work.get()
                if title is None:
                    break
                if run.token.cancelled:
                    continue
                try:
                    self.download_and_store(title, content_date)
                except EcfrAnalyzerError as exc:
                    logger.error(f"Failed to import title {title.number} ({title.name}): {exc}")
                except Exception:
                    logger.exception(f"Unexpected error importing title {title.number}")
                self._increment_progress()
            logger.debug(f"Worker {worker_id} finished")

    def download_and_store(self, title: Title, content_date: date) -> None:
        content = self.downloader.download_title_content(title.number)
        word_count = count_words(content)
        checksum = document_checksum(content)
        self.repository.upsert_title_content(title.id, content_date, content, word_count, checksum)
        logger.info(
            f"Stored title {title.number}: {len(content)} bytes, {word_count} words, checksum {checksum[:8]}..."
        )

    # =========================================================================
    # Step 4: historical
    # =========================================================================

    def import_historical(self, run: ImportRun) -> None:
        self._set_overall_step(ImportStep.HISTORICAL, "Creating historical snapshots")

        try:
            self.historical.capture_snapshot()
        except ImportCancelled:
            raise
        except EcfrAnalyzerError as exc:
            logger.warning(f"Failed to create current snapshot: {exc}")
            self._fail("Failed to create current snapshot", exc)

        self.store.update(current_step="Importing historical data from eCFR API", progress=50)
        try:
            self.historical.import_historical_data(cancel=run.token)
        except ImportCancelled:
            raise
        except EcfrAnalyzerError as exc:
            logger.warning(f"Failed to import historical data: {exc}")

        self.store.update(current_step="Historical snapshots completed", progress=100)
        self.store.mark_step_complete(ImportStep.HISTORICAL)
