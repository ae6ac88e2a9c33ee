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
Data models for Unity package extraction, preview and content screening.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any

KIB = 1024
MIB = 1024 * KIB
GIB = 1024 * MIB
TIB = 1024 * GIB


class LimitKind(str, Enum):
    """Quota that an extraction job can breach."""

    ASSET_BYTES = "asset_bytes"
    PACKAGE_BYTES = "package_bytes"
    ASSET_COUNT = "asset_count"


class IOFailureKind(str, Enum):
    """Classification of filesystem failures during extraction."""

    DISK_FULL = "disk_full"
    OTHER = "other"


class ExtractionState(str, Enum):
    """Lifecycle states of an extraction session."""

    INIT = "init"
    READING = "reading"
    VALIDATING = "validating"
    WRITING = "writing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (ExtractionState.COMPLETED, ExtractionState.FAILED, ExtractionState.CANCELLED)


class ThreatSeverity(str, Enum):
    """Severity levels for malicious-content threats."""

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"

    @property
    def rank(self) -> int:
        return {"LOW": 1, "MEDIUM": 2, "HIGH": 3}[self.value]


class ThreatType(str, Enum):
    """Kinds of malicious indicators reported by the scanner."""

    DISCORD_WEBHOOK = "discord_webhook"
    UNSAFE_LINKS = "unsafe_links"
    SUSPICIOUS_CODE_PATTERNS = "suspicious_code_patterns"


class DiagnosticKind(str, Enum):
    """Non-fatal conditions noticed while assembling assets."""

    MISSING_PATHNAME = "missing_pathname"
    INVALID_PATHNAME = "invalid_pathname"
    LATE_COMPONENT = "late_component"


# Defaults and hard ceilings for extraction quotas
DEFAULT_MAX_ASSET_BYTES = 2 * GIB
DEFAULT_MAX_PACKAGE_BYTES = 16 * GIB
DEFAULT_MAX_ASSETS = 100_000
MAX_ASSET_BYTES_CEILING = 100 * GIB
MAX_PACKAGE_BYTES_CEILING = 1 * TIB
MAX_ASSETS_CEILING = 1_000_000


def _within_range(value: Any, ceiling: int, default: int) -> int:
    """Return *value* if it lies in (0, ceiling], otherwise *default*."""
    if isinstance(value, bool) or not isinstance(value, int):
        return default
    if value <= 0 or value > ceiling:
        return default
    return value


@dataclass(frozen=True)
class ExtractionLimits:
    """Resource quotas for a single extraction job."""

    max_asset_bytes: int = DEFAULT_MAX_ASSET_BYTES
    max_package_bytes: int = DEFAULT_MAX_PACKAGE_BYTES
    max_assets: int = DEFAULT_MAX_ASSETS

    @classmethod
    def normalize(cls, limits: "ExtractionLimits | None") -> "ExtractionLimits":
        """Bring limits into their valid ranges.

        Values outside ``(0, ceiling]`` fall back to the default (they are never
        clamped to zero), and the package budget is raised to the asset budget
        when it is lower. Applying ``normalize`` twice yields the same limits.
        """
        if limits is None:
            return cls()

        max_asset_bytes = _within_range(limits.max_asset_bytes, MAX_ASSET_BYTES_CEILING, DEFAULT_MAX_ASSET_BYTES)
        max_package_bytes = _within_range(
            limits.max_package_bytes, MAX_PACKAGE_BYTES_CEILING, DEFAULT_MAX_PACKAGE_BYTES
        )
        max_assets = _within_range(limits.max_assets, MAX_ASSETS_CEILING, DEFAULT_MAX_ASSETS)

        if max_package_bytes < max_asset_bytes:
            max_package_bytes = max_asset_bytes

        return cls(max_asset_bytes=max_asset_bytes, max_package_bytes=max_package_bytes, max_assets=max_assets)

    def to_dict(self) -> dict[str, int]:
        return {
            "max_asset_bytes": self.max_asset_bytes,
            "max_package_bytes": self.max_package_bytes,
            "max_assets": self.max_assets,
        }


@dataclass(frozen=True)
class ExtractionOptions:
    """Caller-supplied options for an extraction job."""

    organize_by_categories: bool = False
    temporary_directory: str | Path | None = None
    limits: ExtractionLimits | None = None
    scan_for_malicious_content: bool = False
    max_workers: int = 4


@dataclass
class AssetDiagnostic:
    """A non-fatal problem with a single GUID bucket."""

    kind: DiagnosticKind
    guid: str
    detail: str = ""

    def to_dict(self) -> dict[str, str]:
        return {"kind": self.kind.value, "guid": self.guid, "detail": self.detail}


@dataclass
class ExtractionProgress:
    """Progress notification emitted after each asset is written."""

    relative_path: str
    output_path: str
    assets_written: int
    bytes_written: int


@dataclass
class ThreatMatch:
    """A single location where a rule matched."""

    file_path: str
    snippet: str
    rule_id: str
    line_number: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "file_path": self.file_path,
            "snippet": self.snippet,
            "rule_id": self.rule_id,
            "line_number": self.line_number,
        }


@dataclass
class MaliciousThreat:
    """Aggregated threat of one type and severity across a package."""

    threat_type: ThreatType
    severity: ThreatSeverity
    description: str
    matches: list[ThreatMatch] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "threat_type": self.threat_type.value,
            "severity": self.severity.value,
            "description": self.description,
            "matches": [m.to_dict() for m in self.matches],
        }


@dataclass
class ScanResult:
    """Outcome of screening a package's content."""

    package_path: str
    is_malicious: bool = False
    threats: list[MaliciousThreat] = field(default_factory=list)
    scan_timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    rule_set_version: str = ""
    files_scanned: int = 0
    files_skipped: int = 0
    files_skipped_oversize: int = 0
    scan_skipped: bool = False
    skip_reason: str | None = None

    @property
    def max_severity(self) -> ThreatSeverity | None:
        if not self.threats:
            return None
        return max((t.severity for t in self.threats), key=lambda s: s.rank)

    def get_threats_by_type(self, threat_type: ThreatType) -> list[MaliciousThreat]:
        return [t for t in self.threats if t.threat_type == threat_type]

    def to_dict(self) -> dict[str, Any]:
        """Convert scan result to dictionary."""
        max_severity = self.max_severity
        return {
            "package_path": self.package_path,
            "is_malicious": self.is_malicious,
            "max_severity": max_severity.value if max_severity else None,
            "threats_count": len(self.threats),
            "threats": [t.to_dict() for t in self.threats],
            "scan_timestamp": self.scan_timestamp.isoformat(),
            "rule_set_version": self.rule_set_version,
            "files_scanned": self.files_scanned,
            "files_skipped": self.files_skipped,
            "files_skipped_oversize": self.files_skipped_oversize,
            "scan_skipped": self.scan_skipped,
            "skip_reason": self.skip_reason,
        }


@dataclass
class ExtractionResult:
    """Results from extracting a single package."""

    package_path: str
    output_directory: str
    extracted_files: list[str] = field(default_factory=list)
    sidecar_files: list[str] = field(default_factory=list)
    total_bytes: int = 0
    diagnostics: list[AssetDiagnostic] = field(default_factory=list)
    correlation_id: str = ""
    scan_result: ScanResult | None = None
    duration_seconds: float = 0.0

    @property
    def assets_extracted(self) -> int:
        return len(self.extracted_files)

    def to_dict(self) -> dict[str, Any]:
        """Convert extraction result to dictionary."""
        return {
            "package_path": self.package_path,
            "output_directory": self.output_directory,
            "assets_extracted": self.assets_extracted,
            "extracted_files": self.extracted_files,
            "sidecar_files": self.sidecar_files,
            "total_bytes": self.total_bytes,
            "diagnostics": [d.to_dict() for d in self.diagnostics],
            "correlation_id": self.correlation_id,
            "duration_ms": int(self.duration_seconds * 1000),
            "scan_result": self.scan_result.to_dict() if self.scan_result else None,
        }


@dataclass
class PreviewAsset:
    """One asset as seen by the preview pass."""

    relative_path: str
    asset_size_bytes: int
    has_meta_file: bool = False
    preview_image_data: bytes | None = None
    asset_data: bytes | None = None
    is_asset_data_truncated: bool = False
    preview_image_path: str | None = None
    guid: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "relative_path": self.relative_path,
            "guid": self.guid,
            "asset_size_bytes": self.asset_size_bytes,
            "has_meta_file": self.has_meta_file,
            "has_preview_image": self.preview_image_data is not None,
            "preview_image_path": self.preview_image_path,
            "is_asset_data_truncated": self.is_asset_data_truncated,
        }


@dataclass
class PreviewResult:
    """Non-destructive listing of a package's contents."""

    package_path: str
    package_name: str
    package_size_bytes: int = 0
    last_modified: datetime | None = None
    total_asset_size_bytes: int = 0
    assets: list[PreviewAsset] = field(default_factory=list)
    directories_to_prune: set[str] = field(default_factory=set)
    temporary_extraction_root: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert preview result to dictionary."""
        return {
            "package_path": self.package_path,
            "package_name": self.package_name,
            "package_size_bytes": self.package_size_bytes,
            "last_modified": self.last_modified.isoformat() if self.last_modified else None,
            "total_asset_size_bytes": self.total_asset_size_bytes,
            "assets_count": len(self.assets),
            "assets": [a.to_dict() for a in self.assets],
            "directories_to_prune": sorted(self.directories_to_prune),
            "temporary_extraction_root": self.temporary_extraction_root,
        }
