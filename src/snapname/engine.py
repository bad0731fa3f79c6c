#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
snapname Engine
The per-file rename pipeline and the one-shot batch workflows.

Per file, steps always run in this order:
classify -> analyze -> synthesize -> resolve -> rename/copy -> publish
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from pathlib import Path
from typing import Any, Callable, Dict, FrozenSet, List, Optional, Set, Tuple

from .clipboard import ClipboardPublisher, ClipboardResult
from .config import ConfigError, SUPPORTED_EXTENSIONS
from .logs import event_extra
from .naming import (
    SEPARATOR,
    clean_filename,
    get_unique_filename,
    get_unique_filename_simulated,
    is_already_processed,
    synthesize_name,
)
from .security import copy_file_with_hash
from .vision import check_provider_connection
from .vision_providers import AnalysisResult, VisionProvider

logger = logging.getLogger(__name__)

# --- Change statuses ---
STATUS_RENAME = 'rename'
STATUS_NO_CHANGE = 'no_change'
STATUS_SKIP = 'skip'
STATUS_ERROR = 'error'

# --- Batch modes ---
MODE_PREVIEW = 'preview'
MODE_RENAME = 'rename'
MODE_COPY = 'copy'
PROCESS_MODES = (MODE_RENAME, MODE_COPY)

FILENAME_FORMATS = (
    '{description}',
    '{prefix}_{description}',
    '{prefix}-{description}',
    '{date}_{prefix}_{description}',
)
DEFAULT_PREFIX = 'img'


# ==============================================================================
# CORE UTILITIES
# ==============================================================================

def is_supported_image(path: Path, extensions: FrozenSet[str] = SUPPORTED_EXTENSIONS) -> bool:
    """True for non-hidden files with an accepted image extension (case-insensitive)."""
    return not path.name.startswith('.') and path.suffix.lower() in extensions


def list_image_files(folder: Path, extensions: FrozenSet[str] = SUPPORTED_EXTENSIONS) -> List[Path]:
    """Image files directly inside ``folder``, in lexicographic path order."""
    return sorted(
        path for path in folder.iterdir()
        if path.is_file() and is_supported_image(path, extensions)
    )


def rename_image(source_path: Path, new_path: Path) -> None:
    """
    Rename a file and emit the ``file_renamed`` event.

    Raises:
        OSError: if the rename fails
    """
    source_path.rename(new_path)
    logger.info("Renamed: %s → %s", source_path.name, new_path.name,
                extra=event_extra("file_renamed", original=source_path.name,
                                  new=new_path.name, folder=str(new_path.parent)))


# ==============================================================================
# PER-FILE PIPELINE
# ==============================================================================

@dataclass
class PipelineResult:
    """What happened to one file in the continuous pipeline."""
    original_path: Path
    status: str
    new_path: Optional[Path] = None
    analysis: Optional[AnalysisResult] = None
    clipboard: Optional[ClipboardResult] = None
    error: Optional[str] = None


def process_single_image(
    image_path: Path,
    provider: VisionProvider,
    clipboard: Optional[ClipboardPublisher] = None,
    copy_to_clipboard: bool = False,
    before_rename: Optional[Callable[[Path], None]] = None
) -> PipelineResult:
    """
    Analyze one image, rename it in place, and optionally publish it to the clipboard.

    ``before_rename`` is called with the target path right before the
    rename, so a caller watching the folder can claim it first.

    Analyzer failures degrade to a fallback name. Filesystem errors are
    logged and reported in the result, never raised.
    """
    analysis = provider.analyze(image_path)
    candidate = synthesize_name(analysis.text, image_path.suffix)

    try:
        new_path = get_unique_filename(candidate.stem, candidate.extension,
                                       image_path.parent, current=image_path)
        if new_path == image_path:
            logger.info("No change needed: %s", image_path.name,
                        extra=event_extra("file_skipped", file=image_path.name, reason="no_change"))
            return PipelineResult(image_path, STATUS_NO_CHANGE, image_path, analysis)
        if before_rename is not None:
            before_rename(new_path)
        rename_image(image_path, new_path)
    except OSError as e:
        logger.error("Failed to rename %s: %s", image_path.name, e,
                     extra=event_extra("rename_failed", file=str(image_path)))
        return PipelineResult(image_path, STATUS_ERROR, analysis=analysis, error=str(e))

    result = PipelineResult(image_path, STATUS_RENAME, new_path, analysis)
    if copy_to_clipboard and clipboard is not None:
        result.clipboard = clipboard.publish(new_path)
    return result


# ==============================================================================
# BATCH MODELS
# ==============================================================================

@dataclass(frozen=True)
class BatchSettings:
    """Options for one batch run."""
    process_mode: str = MODE_RENAME
    copy_destination: Optional[Path] = None
    skip_processed: bool = True
    copy_to_clipboard: bool = False
    prefix: str = ''
    filename_format: str = '{description}'
    file_types: FrozenSet[str] = SUPPORTED_EXTENSIONS

    def validate(self) -> "BatchSettings":
        if self.process_mode not in PROCESS_MODES:
            raise ConfigError(f"Invalid process mode: {self.process_mode!r}")
        if self.process_mode == MODE_COPY and not self.copy_destination:
            raise ConfigError("Copy mode needs a copy destination")
        if self.filename_format not in FILENAME_FORMATS:
            raise ConfigError(f"Invalid filename format: {self.filename_format!r}")
        if not self.file_types:
            raise ConfigError("At least one file type must be specified")
        return self

    def destination_for(self, image_path: Path) -> Path:
        if self.process_mode == MODE_COPY:
            return Path(self.copy_destination)
        return image_path.parent


@dataclass
class BatchChangeEntry:
    """One row of a batch run."""
    original_path: Path
    proposed_name: str
    final_name: str
    final_path: Path
    status: str
    size: int = 0
    analysis: Optional[str] = None
    reason: Optional[str] = None

    @property
    def original_name(self) -> str:
        return self.original_path.name

    def to_dict(self) -> Dict[str, Any]:
        return {
            'original_path': str(self.original_path),
            'original_name': self.original_name,
            'proposed_name': self.proposed_name,
            'final_name': self.final_name,
            'final_path': str(self.final_path),
            'status': self.status,
            'size': self.size,
            'analysis': self.analysis,
            'reason': self.reason,
        }


@dataclass
class BatchReport:
    """Aggregated result of a preview or apply run."""
    folder: Path
    mode: str
    settings: BatchSettings
    total_files: int = 0
    processed: int = 0
    skipped: int = 0
    errors: int = 0
    changes: List[BatchChangeEntry] = field(default_factory=list)
    latencies: List[float] = field(default_factory=list)

    @property
    def processable_files(self) -> int:
        return sum(1 for c in self.changes if c.status in (STATUS_RENAME, STATUS_NO_CHANGE))

    @property
    def average_latency(self) -> Optional[float]:
        if not self.latencies:
            return None
        return sum(self.latencies) / len(self.latencies)

    @property
    def total_size(self) -> int:
        return sum(c.size for c in self.changes if c.status == STATUS_RENAME)

    def add(self, entry: BatchChangeEntry) -> BatchChangeEntry:
        self.changes.append(entry)
        if entry.status == STATUS_RENAME:
            self.processed += 1
        elif entry.status == STATUS_ERROR:
            self.errors += 1
        else:
            self.skipped += 1
        return entry

    def to_dict(self) -> Dict[str, Any]:
        return {
            'timestamp': datetime.now().isoformat(),
            'folder': str(self.folder),
            'mode': self.mode,
            'summary': {
                'total_files': self.total_files,
                'processable_files': self.processable_files,
                'processed': self.processed,
                'skipped': self.skipped,
                'errors': self.errors,
                'average_latency': self.average_latency,
            },
            'settings': {
                'process_mode': self.settings.process_mode,
                'copy_destination': str(self.settings.copy_destination) if self.settings.copy_destination else None,
                'skip_processed': self.settings.skip_processed,
                'prefix': self.settings.prefix,
                'filename_format': self.settings.filename_format,
            },
            'changes': [c.to_dict() for c in self.changes if c.status != STATUS_ERROR],
            'errors': [
                {'file': c.original_name, 'error': c.reason}
                for c in self.changes if c.status == STATUS_ERROR
            ],
        }


# ==============================================================================
# BATCH HELPERS
# ==============================================================================

def generate_mock_analysis(filename: str) -> str:
    """Deterministic stand-in for model output, so previews cost no API calls."""
    lower_name = filename.lower()

    if 'screenshot' in lower_name:
        return 'application_screenshot_interface'
    elif 'login' in lower_name:
        return 'user_login_form'
    elif 'dashboard' in lower_name:
        return 'admin_dashboard_view'
    elif 'profile' in lower_name:
        return 'user_profile_page'
    elif 'settings' in lower_name:
        return 'application_settings_menu'
    elif 'img_' in lower_name or 'image' in lower_name:
        return 'generic_image_content'

    stem = Path(filename).stem.lower()
    words = ''.join(ch if ch.isascii() and ch.isalnum() else ' ' for ch in stem)
    return SEPARATOR.join(words.split())[:30].strip(SEPARATOR) or 'unknown_content'


def apply_filename_format(description: str, settings: BatchSettings, today: Optional[date] = None) -> str:
    """Fill the configured filename format with the description, prefix and date."""
    fmt = settings.filename_format
    if fmt == '{description}':
        return description

    prefix = clean_filename(settings.prefix) or DEFAULT_PREFIX
    filename = (fmt
                .replace('{description}', description)
                .replace('{prefix}', prefix)
                .replace('{date}', (today or date.today()).isoformat()))
    while '__' in filename:
        filename = filename.replace('__', '_')
    return filename.strip('_-')


def _file_size(path: Path) -> int:
    try:
        return path.stat().st_size
    except OSError:
        return 0


def _skip_entry(image_path: Path, reason: str) -> BatchChangeEntry:
    return BatchChangeEntry(
        original_path=image_path,
        proposed_name=image_path.name,
        final_name=image_path.name,
        final_path=image_path,
        status=STATUS_SKIP,
        size=_file_size(image_path),
        reason=reason,
    )


def _error_entry(image_path: Path, error: str, proposed_name: Optional[str] = None) -> BatchChangeEntry:
    return BatchChangeEntry(
        original_path=image_path,
        proposed_name=proposed_name or image_path.name,
        final_name=image_path.name,
        final_path=image_path,
        status=STATUS_ERROR,
        reason=error,
    )


def _check_folder(folder: Path) -> None:
    if not folder.exists():
        raise FileNotFoundError(f"Folder does not exist: {folder}")
    if not folder.is_dir():
        raise NotADirectoryError(f"Path is not a directory: {folder}")


# ==============================================================================
# BATCH WORKFLOWS
# ==============================================================================

def preview_batch(
    folder: Path,
    settings: Optional[BatchSettings] = None,
    provider: Optional[VisionProvider] = None,
    analyze: bool = False
) -> BatchReport:
    """
    Work out what a batch run would do, without touching the filesystem.

    By default names come from ``generate_mock_analysis`` and no API
    quota is spent; with ``analyze=True`` the real provider is called.
    Proposed names are de-duplicated against each other and against files
    already on disk.
    """
    settings = (settings or BatchSettings()).validate()
    if analyze and provider is None:
        raise ValueError("preview with analyze=True needs a provider")

    _check_folder(folder)
    image_files = list_image_files(folder, settings.file_types)
    report = BatchReport(folder=folder, mode=MODE_PREVIEW, settings=settings, total_files=len(image_files))

    simulated_paths: Set[Path] = set()

    for image_path in image_files:
        if settings.skip_processed and is_already_processed(image_path.stem):
            report.add(_skip_entry(image_path, "Already processed"))
            continue

        if analyze:
            result = provider.analyze(image_path)
            report.latencies.append(result.elapsed)
            analysis = result.text
        else:
            analysis = generate_mock_analysis(image_path.name)

        candidate = synthesize_name(analysis, image_path.suffix)
        stem = apply_filename_format(candidate.stem, settings)
        destination = settings.destination_for(image_path)
        current = image_path if settings.process_mode == MODE_RENAME else None

        final_path = get_unique_filename_simulated(stem, candidate.extension, destination,
                                                   simulated_paths, current=current)
        simulated_paths.add(final_path)

        report.add(BatchChangeEntry(
            original_path=image_path,
            proposed_name=f"{stem}{candidate.extension}",
            final_name=final_path.name,
            final_path=final_path,
            status=STATUS_NO_CHANGE if final_path == image_path else STATUS_RENAME,
            size=_file_size(image_path),
            analysis=analysis,
        ))

    return report


def apply_batch(
    folder: Path,
    provider: VisionProvider,
    settings: Optional[BatchSettings] = None,
    clipboard: Optional[ClipboardPublisher] = None,
    verify_connection: bool = True
) -> BatchReport:
    """
    Rename (or copy) every qualifying image in ``folder``, one file at a time.

    Each file's mutation is independent: an error is recorded and the run
    moves on to the next file.

    Raises:
        ConfigError: invalid batch settings
        ProviderConnectionError: the provider failed its connection test
        FileNotFoundError / NotADirectoryError: bad folder
    """
    settings = (settings or BatchSettings()).validate()
    _check_folder(folder)

    if settings.process_mode == MODE_COPY:
        Path(settings.copy_destination).mkdir(parents=True, exist_ok=True)

    image_files = list_image_files(folder, settings.file_types)
    report = BatchReport(folder=folder, mode=settings.process_mode, settings=settings,
                         total_files=len(image_files))
    if not image_files:
        logger.info("No image files found in %s", folder)
        return report

    if verify_connection:
        check_provider_connection(provider)

    logger.info("Starting batch %s of %d files in %s", settings.process_mode, len(image_files), folder,
                extra=event_extra("batch_started", folder=str(folder), files=len(image_files)))

    for image_path in image_files:
        if settings.skip_processed and is_already_processed(image_path.stem):
            logger.info("Skipping already processed: %s", image_path.name,
                        extra=event_extra("file_skipped", file=image_path.name, reason="already_processed"))
            report.add(_skip_entry(image_path, "Already processed"))
            continue

        report.add(_apply_one(image_path, provider, settings, clipboard, report))

    _log_summary(report)
    return report


def _apply_one(
    image_path: Path,
    provider: VisionProvider,
    settings: BatchSettings,
    clipboard: Optional[ClipboardPublisher],
    report: BatchReport
) -> BatchChangeEntry:
    result = provider.analyze(image_path)
    report.latencies.append(result.elapsed)

    candidate = synthesize_name(result.text, image_path.suffix)
    stem = apply_filename_format(candidate.stem, settings)
    proposed_name = f"{stem}{candidate.extension}"
    destination = settings.destination_for(image_path)
    size = _file_size(image_path)

    try:
        if settings.process_mode == MODE_RENAME:
            final_path = get_unique_filename(stem, candidate.extension, destination, current=image_path)
            if final_path == image_path:
                logger.info("No change needed: %s", image_path.name,
                            extra=event_extra("file_skipped", file=image_path.name, reason="no_change"))
                return BatchChangeEntry(image_path, proposed_name, image_path.name, image_path,
                                        STATUS_NO_CHANGE, size, result.text)
            rename_image(image_path, final_path)
            if settings.copy_to_clipboard and clipboard is not None:
                clipboard.publish(final_path)
        else:
            final_path = get_unique_filename(stem, candidate.extension, destination)
            copy_file_with_hash(image_path, final_path)
            logger.info("Copied: %s → %s", image_path.name, final_path,
                        extra=event_extra("file_copied", original=image_path.name,
                                          new=final_path.name, folder=str(destination)))
    except (OSError, RuntimeError) as e:
        logger.error("Failed to %s %s: %s", settings.process_mode, image_path.name, e,
                     extra=event_extra("file_error", file=str(image_path), proposed=proposed_name))
        return _error_entry(image_path, str(e), proposed_name)

    return BatchChangeEntry(image_path, proposed_name, final_path.name, final_path,
                            STATUS_RENAME, size, result.text)


def _log_summary(report: BatchReport) -> None:
    average = report.average_latency
    logger.info(
        "Batch processing complete: %d processed, %d skipped, %d errors",
        report.processed, report.skipped, report.errors,
        extra=event_extra(
            "batch_summary",
            total=report.total_files,
            processed=report.processed,
            skipped=report.skipped,
            errors=report.errors,
            average_time=f"{average:.1f}s" if average is not None else "n/a",
        ),
    )


# ==============================================================================
# PREVIEW CHECKS & EXPORT
# ==============================================================================

def validate_preview(report: BatchReport) -> Tuple[bool, List[str]]:
    """
    Look for problems in a preview before applying it.

    Returns:
        Tuple of (valid, issues)
    """
    issues: List[str] = []

    new_names = [c.final_path for c in report.changes if c.status == STATUS_RENAME]
    seen: Set[Path] = set()
    duplicates: List[str] = []
    for path in new_names:
        if path in seen and path.name not in duplicates:
            duplicates.append(path.name)
        seen.add(path)
    if duplicates:
        issues.append(f"Duplicate new filenames detected: {', '.join(duplicates)}")

    if report.settings.process_mode == MODE_COPY and not Path(report.settings.copy_destination).exists():
        issues.append("Copy destination directory does not exist")

    for change in report.changes:
        if change.status == STATUS_RENAME and change.final_path.exists():
            issues.append(f"File would overwrite existing: {change.final_name}")

    return not issues, issues


def export_preview(report: BatchReport, output_path: Path) -> bool:
    """
    Write a report to JSON.

    Returns:
        True on success, False on error
    """
    try:
        with open(output_path, 'w', encoding='utf-8') as f:
            json.dump(report.to_dict(), f, indent=2)
        return True
    except OSError as e:
        logger.error("Failed to export preview: %s", e)
        return False
