# Copyright 2026 Cisco Systems, Inc.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
#
# SPDX-License-Identifier: Apache-2.0

"""
Extraction orchestrator for Unity packages.

An extraction job runs as an ``ExtractionSession`` with an explicit state
machine::

    INIT -> READING -> VALIDATING -> WRITING -> (READING ...) -> COMPLETED
                      any non-terminal state -> FAILED | CANCELLED

Archive decoding and assembly are sequential. Quota checks and destination
planning happen on the reading thread before an asset is handed to the worker
pool, so concurrent writers can never overshoot a limit. Workers write into a
private staging directory; only once every asset has been staged are the files
moved into the output directory, in archive order. Any failure or cancellation
removes the staging area and undoes whatever part of the commit already ran,
so a failed job leaves no partial output behind.
"""

import errno
import logging
import os
import shutil
import threading
import time
import uuid
from collections.abc import Callable
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from pathlib import Path

from ..utils.disk_space import build_friendly_message as default_friendly_message
from ..utils.disk_space import is_disk_full as default_is_disk_full
from .archive_reader import DEFAULT_MAX_COMPRESSION_RATIO, ArchiveReader
from .assembler import AssetAssembler, LogicalAsset, OversizePolicy
from .classification import resolve_output_relative_path
from .exceptions import ExtractionCancelledError, ExtractionIOError, UnityPackageError
from .limits import check_asset_count, check_package_bytes, enforce
from .models import (
    ExtractionLimits,
    ExtractionOptions,
    ExtractionProgress,
    ExtractionResult,
    ExtractionState,
    IOFailureKind,
)
from .paths import UniquePathAllocator, ensure_under_root

logger = logging.getLogger(__name__)

SESSION_DIR_PREFIX = ".unitypackage_session_"
MAX_WORKERS_CEILING = 32

DiskFullPredicate = Callable[[BaseException], bool]
FriendlyMessageBuilder = Callable[[str], str]
ProgressCallback = Callable[[ExtractionProgress], None]

_TRANSITIONS: dict[ExtractionState, frozenset[ExtractionState]] = {
    ExtractionState.INIT: frozenset({ExtractionState.READING}),
    ExtractionState.READING: frozenset({ExtractionState.VALIDATING, ExtractionState.WRITING}),
    ExtractionState.VALIDATING: frozenset({ExtractionState.WRITING}),
    ExtractionState.WRITING: frozenset({ExtractionState.READING, ExtractionState.COMPLETED}),
}


@dataclass(frozen=True)
class _WritePlan:
    sequence: int
    relative_path: str
    target_path: Path
    staged_asset: Path
    staged_meta: Path | None


@dataclass
class _StagedAsset:
    plan: _WritePlan
    asset_bytes: int
    meta_bytes: int


class ExtractionSession:
    """A single extraction job.

    Sessions are single-use: ``run()`` may only be called once. ``state`` can
    be observed from other threads while the job is running.
    """

    def __init__(
        self,
        package_path: str | Path,
        output_directory: str | Path,
        options: ExtractionOptions | None = None,
        *,
        is_disk_full: DiskFullPredicate = default_is_disk_full,
        build_friendly_message: FriendlyMessageBuilder = default_friendly_message,
        scanner=None,
        cancel_event: threading.Event | None = None,
        progress: ProgressCallback | None = None,
        max_compression_ratio: float = DEFAULT_MAX_COMPRESSION_RATIO,
    ):
        self.package_path = Path(package_path)
        self.output_directory = Path(output_directory)
        self.options = options or ExtractionOptions()
        self.limits = ExtractionLimits.normalize(self.options.limits)
        self.correlation_id = uuid.uuid4().hex[:8]
        self.cancel_event = cancel_event or threading.Event()
        self.max_workers = min(max(1, self.options.max_workers), MAX_WORKERS_CEILING)
        self.max_compression_ratio = max_compression_ratio

        self._is_disk_full = is_disk_full
        self._build_friendly_message = build_friendly_message
        self._scanner = scanner
        self._progress = progress

        self._state = ExtractionState.INIT
        self._state_lock = threading.Lock()
        self.state_history: list[ExtractionState] = [ExtractionState.INIT]

        self._abort = threading.Event()
        self._session_dir: Path | None = None
        self._staging_dir: Path | None = None
        self._spool_dir: Path | None = None
        self._created_dirs: list[Path] = []
        self._committed: list[Path] = []
        self._backups: list[tuple[Path, Path]] = []
        self._submitted: dict[Future, LogicalAsset] = {}

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    @property
    def state(self) -> ExtractionState:
        with self._state_lock:
            return self._state

    def _transition(self, new_state: ExtractionState) -> None:
        with self._state_lock:
            current = self._state
            if current == new_state:
                return
            terminal_failure = new_state in (ExtractionState.FAILED, ExtractionState.CANCELLED)
            if current.is_terminal or not (terminal_failure or new_state in _TRANSITIONS.get(current, ())):
                raise RuntimeError(f"Illegal extraction state transition: {current.value} -> {new_state.value}")
            self._state = new_state
            self.state_history.append(new_state)
        logger.debug("State %s -> %s | correlation_id=%s", current.value, new_state.value, self.correlation_id)

    def cancel(self) -> None:
        """Request cooperative cancellation."""
        self.cancel_event.set()

    def _should_stop(self) -> bool:
        return self.cancel_event.is_set()

    def _check_cancel(self) -> None:
        if self.cancel_event.is_set():
            raise ExtractionCancelledError("Extraction cancelled")

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def run(self) -> ExtractionResult:
        """Execute the job and return its result.

        Raises:
            FileNotFoundError: the package does not exist
            ArchiveCorruptError: the archive cannot be decoded
            DecompressionBombSuspectedError: the inflation ratio was exceeded
            LimitExceededError: a quota was breached
            UnsafeAssetPathError: an asset would escape the output directory
            ExtractionIOError: writing failed (``kind`` tells disk-full apart)
            ExtractionCancelledError: the job was cancelled
        """
        if self.state != ExtractionState.INIT:
            raise RuntimeError("ExtractionSession.run() can only be called once")
        if not self.package_path.is_file():
            self._transition(ExtractionState.FAILED)
            raise FileNotFoundError(f"Unity package not found: {self.package_path}")

        started = time.monotonic()
        logger.info(
            "Extraction started | package='%s' | output='%s' | organize=%s | limits=%s | correlation_id=%s",
            self.package_path,
            self.output_directory,
            self.options.organize_by_categories,
            self.limits.to_dict(),
            self.correlation_id,
        )

        try:
            result = self._run()
        except ExtractionCancelledError:
            self._rollback()
            self._transition(ExtractionState.CANCELLED)
            logger.info("Extraction cancelled | correlation_id=%s", self.correlation_id)
            raise
        except UnityPackageError as e:
            self._rollback()
            self._transition(ExtractionState.FAILED)
            logger.error("Extraction failed | error=%s | correlation_id=%s", e, self.correlation_id)
            raise
        except OSError as e:
            self._rollback()
            self._transition(ExtractionState.FAILED)
            io_error = self._classify_io_error(e)
            logger.error(
                "Extraction I/O failure | kind=%s | path='%s' | error=%s | correlation_id=%s",
                io_error.kind.value,
                io_error.path,
                e,
                self.correlation_id,
            )
            raise io_error from e
        except BaseException:
            self._rollback()
            self._transition(ExtractionState.FAILED)
            logger.exception("Extraction failed unexpectedly | correlation_id=%s", self.correlation_id)
            raise
        finally:
            self._remove_session_dir()

        result.duration_seconds = time.monotonic() - started
        self._transition(ExtractionState.COMPLETED)
        logger.info(
            "Extraction completed | assets=%d | bytes=%d | duration=%.2fs | correlation_id=%s",
            result.assets_extracted,
            result.total_bytes,
            result.duration_seconds,
            self.correlation_id,
        )
        return result

    def _run(self) -> ExtractionResult:
        self._prepare_directories()
        self._transition(ExtractionState.READING)

        reader = ArchiveReader(self.package_path, max_compression_ratio=self.max_compression_ratio)
        assembler = AssetAssembler(
            self.limits.max_asset_bytes,
            oversize_policy=OversizePolicy.FAIL,
            spool_directory=self._spool_dir,
        )
        allocator = UniquePathAllocator(allow_suffixes=True)
        max_in_flight = self.max_workers * 2

        entries = reader.entries()
        assets = assembler.assemble(entries, cancel_check=self._should_stop)
        executor = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix=f"upx-{self.correlation_id}")
        futures: list[Future] = []
        pending: set[Future] = set()
        asset_count = 0
        reserved_bytes = 0
        succeeded = False

        try:
            for asset in assets:
                handed_off = False
                try:
                    self._transition(ExtractionState.VALIDATING)
                    self._check_cancel()

                    incoming = asset.size + (asset.meta.size if asset.meta else 0)
                    enforce(check_asset_count(self.limits, asset_count), asset.relative_path)
                    enforce(check_package_bytes(self.limits, reserved_bytes, incoming), asset.relative_path)
                    plan = self._plan(asset, allocator)
                    asset_count += 1
                    reserved_bytes += incoming

                    self._transition(ExtractionState.WRITING)
                    pending = self._throttle(pending, max_in_flight)
                    self._check_cancel()
                    future = executor.submit(self._stage_asset, asset, plan)
                    self._submitted[future] = asset
                    handed_off = True
                    futures.append(future)
                    pending.add(future)
                    self._transition(ExtractionState.READING)
                finally:
                    if not handed_off:
                        asset.close()

            staged: list[_StagedAsset] = []
            for future in futures:
                outcome = future.result()
                if outcome is not None:
                    staged.append(outcome)

            self._transition(ExtractionState.WRITING)
            self._check_cancel()
            if len(staged) != len(futures):
                # a worker bailed out without an error; only cancellation does that
                raise ExtractionCancelledError("Extraction cancelled")

            result = self._commit(staged)
            result.diagnostics = list(assembler.diagnostics)
            succeeded = True
        finally:
            if not succeeded:
                self._abort.set()
            executor.shutdown(wait=True, cancel_futures=True)
            for future, asset in self._submitted.items():
                if future.cancelled():
                    asset.close()
            self._submitted.clear()
            assets.close()
            entries.close()

        logger.debug(
            "Assembly stats | seen=%d | ignored=%d | folders=%d | orphaned=%d | late=%d | correlation_id=%s",
            assembler.stats.entries_seen,
            assembler.stats.entries_ignored,
            assembler.stats.folders,
            assembler.stats.orphaned,
            assembler.stats.late_components,
            self.correlation_id,
        )

        if self.options.scan_for_malicious_content:
            result.scan_result = self._scan(result)
        return result

    # ------------------------------------------------------------------
    # Planning and staging
    # ------------------------------------------------------------------

    def _plan(self, asset: LogicalAsset, allocator: UniquePathAllocator) -> _WritePlan:
        relative = resolve_output_relative_path(asset.relative_path, self.options.organize_by_categories)
        unique = allocator.allocate(relative)
        if unique != relative:
            logger.info(
                "Path renamed for uniqueness | original='%s' | unique='%s' | correlation_id=%s",
                relative,
                unique,
                self.correlation_id,
            )
        target = ensure_under_root(self.output_directory, unique)
        if asset.meta is not None:
            ensure_under_root(self.output_directory, unique + ".meta")

        if self._staging_dir is None:
            raise RuntimeError("Staging directory is not prepared")
        stem = f"{asset.sequence:08d}"
        return _WritePlan(
            sequence=asset.sequence,
            relative_path=unique,
            target_path=target,
            staged_asset=self._staging_dir / f"{stem}.asset",
            staged_meta=self._staging_dir / f"{stem}.meta" if asset.meta is not None else None,
        )

    def _throttle(self, pending: set[Future], max_in_flight: int) -> set[Future]:
        while len(pending) >= max_in_flight:
            done, pending = wait(pending, return_when=FIRST_COMPLETED)
            for future in done:
                # surface worker failures as early as possible
                future.result()
            self._check_cancel()
        return pending

    def _stage_asset(self, asset: LogicalAsset, plan: _WritePlan) -> _StagedAsset | None:
        """Worker: write one asset (and its meta) into the staging directory."""
        try:
            if self._abort.is_set() or self.cancel_event.is_set():
                return None
            with open(plan.staged_asset, "wb") as fh:
                asset_bytes = asset.asset.copy_to(fh)
            meta_bytes = 0
            if asset.meta is not None and plan.staged_meta is not None:
                with open(plan.staged_meta, "wb") as fh:
                    meta_bytes = asset.meta.copy_to(fh)
            return _StagedAsset(plan, asset_bytes, meta_bytes)
        finally:
            asset.close()

    # ------------------------------------------------------------------
    # Commit and rollback
    # ------------------------------------------------------------------

    def _commit(self, staged: list[_StagedAsset]) -> ExtractionResult:
        result = ExtractionResult(
            package_path=str(self.package_path),
            output_directory=str(self.output_directory),
            correlation_id=self.correlation_id,
        )
        for item in sorted(staged, key=lambda s: s.plan.sequence):
            self._check_cancel()
            plan = item.plan
            self._install(plan.staged_asset, plan.target_path)
            result.extracted_files.append(str(plan.target_path))
            result.total_bytes += item.asset_bytes

            if plan.staged_meta is not None:
                meta_target = plan.target_path.with_name(plan.target_path.name + ".meta")
                self._install(plan.staged_meta, meta_target)
                result.sidecar_files.append(str(meta_target))
                result.total_bytes += item.meta_bytes

            if self._progress is not None:
                self._progress(
                    ExtractionProgress(
                        relative_path=plan.relative_path,
                        output_path=str(plan.target_path),
                        assets_written=result.assets_extracted,
                        bytes_written=result.total_bytes,
                    )
                )
        self._check_cancel()
        return result

    def _install(self, staged: Path, target: Path) -> None:
        self._make_parents(target.parent)
        if target.exists():
            if self._session_dir is None:
                raise RuntimeError("Session directory is not prepared")
            backup = self._session_dir / f"backup_{len(self._backups):08d}"
            _move(target, backup)
            self._backups.append((target, backup))
        _move(staged, target)
        self._committed.append(target)

    def _make_parents(self, directory: Path) -> None:
        missing: list[Path] = []
        current = directory
        while not current.exists() and current != current.parent:
            missing.append(current)
            current = current.parent
        for path in reversed(missing):
            path.mkdir(exist_ok=True)
            self._created_dirs.append(path)

    def _prepare_directories(self) -> None:
        self._make_parents(self.output_directory)
        base = Path(self.options.temporary_directory) if self.options.temporary_directory else self.output_directory
        if base != self.output_directory:
            self._make_parents(base)
        self._session_dir = base / f"{SESSION_DIR_PREFIX}{self.correlation_id}"
        self._staging_dir = self._session_dir / "staging"
        self._spool_dir = self._session_dir / "spool"
        self._staging_dir.mkdir(parents=True)
        self._spool_dir.mkdir()

    def _rollback(self) -> None:
        self._abort.set()
        removed = 0
        for target in reversed(self._committed):
            try:
                target.unlink(missing_ok=True)
                removed += 1
            except OSError as e:
                logger.warning("Rollback could not remove '%s': %s | correlation_id=%s", target, e, self.correlation_id)
        self._committed.clear()

        for target, backup in reversed(self._backups):
            try:
                _move(backup, target)
            except OSError as e:
                logger.warning(
                    "Rollback could not restore '%s': %s | correlation_id=%s", target, e, self.correlation_id
                )
        self._backups.clear()

        self._remove_session_dir()

        for directory in reversed(self._created_dirs):
            try:
                directory.rmdir()
            except OSError:
                # not empty or already gone
                pass
        self._created_dirs.clear()
        logger.info("Rollback completed | files_removed=%d | correlation_id=%s", removed, self.correlation_id)

    def _remove_session_dir(self) -> None:
        if self._session_dir is not None and self._session_dir.exists():
            shutil.rmtree(self._session_dir, ignore_errors=True)

    def _classify_io_error(self, error: OSError) -> ExtractionIOError:
        path = str(error.filename) if error.filename else str(self.output_directory)
        if self._is_disk_full(error):
            return ExtractionIOError(IOFailureKind.DISK_FULL, path, self._build_friendly_message(path))
        return ExtractionIOError(IOFailureKind.OTHER, path, f"Failed to write extracted files to '{path}': {error}")

    # ------------------------------------------------------------------
    # Post-extraction scan
    # ------------------------------------------------------------------

    def _scan(self, result: ExtractionResult):
        scanner = self._scanner
        try:
            if scanner is None:
                from .scanner import MaliciousContentScanner

                scanner = MaliciousContentScanner()
            root = self.output_directory.resolve()
            files = [(Path(p).relative_to(root).as_posix(), Path(p)) for p in result.extracted_files]
            return scanner.scan_files(str(self.package_path), files)
        except Exception as e:
            logger.warning("Malicious content scan failed: %s | correlation_id=%s", e, self.correlation_id)
            return None


def _move(source: Path, destination: Path) -> None:
    try:
        os.replace(source, destination)
    except OSError as e:
        if e.errno != errno.EXDEV:
            raise
        shutil.move(str(source), str(destination))


class UnityPackageExtractor:
    """Extracts Unity packages into a directory.

    Example:
        >>> extractor = UnityPackageExtractor()
        >>> result = extractor.extract("Pack.unitypackage", "out/", ExtractionOptions(organize_by_categories=True))
        >>> print(result.assets_extracted)

    Args:
        scanner: scanner used when ``scan_for_malicious_content`` is set
        is_disk_full: predicate deciding whether an ``OSError`` means the disk is full
        build_friendly_message: formats the user-facing disk-full message for a path
        max_compression_ratio: decompression-bomb threshold
    """

    def __init__(
        self,
        scanner=None,
        is_disk_full: DiskFullPredicate = default_is_disk_full,
        build_friendly_message: FriendlyMessageBuilder = default_friendly_message,
        max_compression_ratio: float = DEFAULT_MAX_COMPRESSION_RATIO,
    ):
        self.scanner = scanner
        self.is_disk_full = is_disk_full
        self.build_friendly_message = build_friendly_message
        self.max_compression_ratio = max_compression_ratio

    def create_session(
        self,
        package_path: str | Path,
        output_directory: str | Path,
        options: ExtractionOptions | None = None,
        cancel_event: threading.Event | None = None,
        progress: ProgressCallback | None = None,
    ) -> ExtractionSession:
        return ExtractionSession(
            package_path,
            output_directory,
            options,
            is_disk_full=self.is_disk_full,
            build_friendly_message=self.build_friendly_message,
            scanner=self.scanner,
            cancel_event=cancel_event,
            progress=progress,
            max_compression_ratio=self.max_compression_ratio,
        )

    def extract(
        self,
        package_path: str | Path,
        output_directory: str | Path,
        options: ExtractionOptions | None = None,
        cancel_event: threading.Event | None = None,
        progress: ProgressCallback | None = None,
    ) -> ExtractionResult:
        """Extract *package_path* into *output_directory*."""
        return self.create_session(package_path, output_directory, options, cancel_event, progress).run()


def extract_package(
    package_path: str | Path,
    output_directory: str | Path,
    options: ExtractionOptions | None = None,
    cancel_event: threading.Event | None = None,
) -> ExtractionResult:
    """Convenience function to extract a package with default collaborators."""
    return UnityPackageExtractor().extract(package_path, output_directory, options, cancel_event)
