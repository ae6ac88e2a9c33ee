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

"""API router for Unity package extractor endpoints.

A composable ``APIRouter`` so the endpoints can be mounted in other FastAPI
applications. Package and output paths are server-local; set
``UNITYPACKAGE_ALLOWED_ROOTS`` to restrict which directories the API may
touch.
"""

import asyncio
import logging
import os
from pathlib import Path

try:
    from fastapi import APIRouter, HTTPException
    from pydantic import BaseModel, Field
except ImportError:
    raise ImportError("API server requires FastAPI. Install with: pip install fastapi uvicorn")

from .. import __version__ as PACKAGE_VERSION
from ..config.config import Config
from ..config.constants import UnityPackageConstants
from ..core.exceptions import (
    ArchiveCorruptError,
    DecompressionBombSuspectedError,
    ExtractionCancelledError,
    ExtractionIOError,
    LimitExceededError,
    UnityPackageError,
    UnsafeAssetPathError,
)
from ..core.extractor import UnityPackageExtractor
from ..core.models import ExtractionLimits, ExtractionOptions, IOFailureKind
from ..core.preview import UnityPackagePreviewBuilder, dispose_preview
from ..core.rules.patterns import RuleLoader
from ..core.scanner import MaliciousContentScanner

logger = logging.getLogger("unitypackage_extractor.api")

router = APIRouter()


def _allowed_roots() -> list[Path]:
    raw = os.environ.get(UnityPackageConstants.ENV_ALLOWED_ROOTS, "")
    return [Path(p).resolve() for p in raw.split(os.pathsep) if p.strip()]


def _validate_path(user_input: str, *, label: str = "path") -> Path:
    """Sanitize and validate a user-supplied filesystem path.

    Rejects null bytes, resolves symlinks, and enforces the optional
    UNITYPACKAGE_ALLOWED_ROOTS allowlist.
    """
    if not user_input or "\x00" in user_input:
        raise HTTPException(status_code=400, detail=f"Invalid {label}: empty or contains null bytes")

    resolved = Path(user_input).resolve()

    allowed = _allowed_roots()
    if allowed and not any(resolved == root or resolved.is_relative_to(root) for root in allowed):
        raise HTTPException(
            status_code=403,
            detail=f"Access denied: {label} is outside the allowed directories",
        )

    return resolved


def _validate_package(user_input: str) -> Path:
    package = _validate_path(user_input, label="package_path")
    if not package.exists():
        raise HTTPException(status_code=404, detail=f"Package not found: {package}")
    if not package.is_file():
        raise HTTPException(status_code=400, detail="package_path must be a file")
    return package


def _http_error(error: Exception) -> HTTPException:
    """Map a typed failure to an HTTP status code."""
    if isinstance(error, FileNotFoundError):
        return HTTPException(status_code=404, detail=str(error))
    if isinstance(error, (LimitExceededError, DecompressionBombSuspectedError)):
        return HTTPException(status_code=413, detail=str(error))
    if isinstance(error, ArchiveCorruptError):
        return HTTPException(status_code=400, detail=str(error))
    if isinstance(error, UnsafeAssetPathError):
        return HTTPException(status_code=422, detail=str(error))
    if isinstance(error, ExtractionIOError):
        status = 507 if error.kind == IOFailureKind.DISK_FULL else 500
        return HTTPException(status_code=status, detail=error.user_message)
    if isinstance(error, ExtractionCancelledError):
        return HTTPException(status_code=500, detail="Extraction was cancelled")
    return HTTPException(status_code=500, detail=f"Operation failed: {error}")


async def _run_blocking(func):
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, func)


# ---------------------------------------------------------------------------
# Pydantic models
# ---------------------------------------------------------------------------


class ExtractRequest(BaseModel):
    """Request model for extracting a package."""

    package_path: str = Field(..., description="Path to the .unitypackage file")
    output_directory: str = Field(..., description="Directory to extract into")
    organize_by_categories: bool = Field(False, description="Group assets into category folders")
    max_asset_bytes: int | None = Field(None, description="Largest single asset accepted")
    max_package_bytes: int | None = Field(None, description="Largest total extracted size accepted")
    max_assets: int | None = Field(None, description="Largest number of assets accepted")
    max_workers: int | None = Field(None, description="Number of writer threads")
    scan_for_malicious_content: bool = Field(False, description="Scan extracted files afterwards")
    rules_path: str | None = Field(None, description="Path to a custom rule set")


class ExtractResponse(BaseModel):
    """Response model for extraction results."""

    correlation_id: str
    package_path: str
    output_directory: str
    assets_extracted: int
    extracted_files: list[str]
    sidecar_files: list[str]
    total_bytes: int
    duration_ms: int
    diagnostics: list[dict]
    scan_result: dict | None = None


class PreviewRequest(BaseModel):
    """Request model for previewing a package."""

    package_path: str = Field(..., description="Path to the .unitypackage file")
    preview_max_bytes: int | None = Field(None, description="Bytes of content kept per asset")


class PreviewResponse(BaseModel):
    """Response model for preview results."""

    package_path: str
    package_name: str
    package_size_bytes: int
    last_modified: str | None
    total_asset_size_bytes: int
    assets_count: int
    assets: list[dict]
    directories_to_prune: list[str]


class ScanRequest(BaseModel):
    """Request model for scanning a package."""

    package_path: str = Field(..., description="Path to the .unitypackage file")
    rules_path: str | None = Field(None, description="Path to a custom rule set")


class ScanResponse(BaseModel):
    """Response model for scan results."""

    package_path: str
    is_malicious: bool
    max_severity: str | None
    threats_count: int
    threats: list[dict]
    scan_timestamp: str
    rule_set_version: str
    files_scanned: int
    files_skipped: int
    files_skipped_oversize: int = 0
    scan_skipped: bool
    skip_reason: str | None = None


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    rule_set_version: str | None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _resolve_rules_path(rules_path: str | None, config: Config) -> str | None:
    if rules_path:
        return str(_validate_path(rules_path, label="rules_path"))
    return config.rules_path


def _make_scanner(rules_path: str | None, config: Config) -> MaliciousContentScanner:
    try:
        return MaliciousContentScanner(
            rules_path=rules_path,
            max_content_bytes=config.scan_max_bytes,
            max_compression_ratio=config.max_compression_ratio,
        )
    except RuntimeError as e:
        raise HTTPException(status_code=400, detail=f"Failed to load rules: {e}")


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.get("/", response_model=dict)
async def root():
    """Root endpoint."""
    return {"service": "Unity Package Extractor API", "version": PACKAGE_VERSION, "docs": "/docs", "health": "/health"}


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    try:
        rule_set_version: str | None = RuleLoader().load_rule_set().version
    except RuntimeError as e:
        logger.warning("Bundled rules failed to load: %s", e)
        rule_set_version = None
    return HealthResponse(status="healthy", version=PACKAGE_VERSION, rule_set_version=rule_set_version)


@router.get("/rules")
async def list_rules():
    """Describe the rule set the scanner uses by default."""
    config = Config.from_env()
    rules_path = Path(config.rules_path) if config.rules_path else None
    try:
        rule_set = RuleLoader(rules_path).load_rule_set()
    except RuntimeError as e:
        raise HTTPException(status_code=500, detail=str(e))
    return {
        "name": rule_set.name,
        "version": rule_set.version,
        "scannable_extensions": list(rule_set.scannable_extensions),
        "rules": [
            {
                "id": rule.id,
                "threat_type": rule.threat_type.value,
                "severity": rule.severity.value,
                "match": rule.match,
                "description": rule.description,
            }
            for rule in rule_set.rules
        ],
    }


@router.post("/extract", response_model=ExtractResponse)
async def extract_package(request: ExtractRequest):
    """Extract a package into a server-local directory."""
    package = _validate_package(request.package_path)
    output_directory = _validate_path(request.output_directory, label="output_directory")
    if output_directory.exists() and not output_directory.is_dir():
        raise HTTPException(status_code=400, detail="output_directory must be a directory")

    config = Config.from_env()
    options = ExtractionOptions(
        organize_by_categories=request.organize_by_categories or config.organize_by_categories,
        temporary_directory=config.temporary_directory,
        limits=ExtractionLimits.normalize(
            ExtractionLimits(
                max_asset_bytes=request.max_asset_bytes or config.max_asset_bytes or 0,
                max_package_bytes=request.max_package_bytes or config.max_package_bytes or 0,
                max_assets=request.max_assets or config.max_assets or 0,
            )
        ),
        scan_for_malicious_content=request.scan_for_malicious_content,
        max_workers=request.max_workers or config.max_workers,
    )
    scanner = None
    if request.scan_for_malicious_content:
        scanner = _make_scanner(_resolve_rules_path(request.rules_path, config), config)
    extractor = UnityPackageExtractor(scanner=scanner, max_compression_ratio=config.max_compression_ratio)

    try:
        result = await _run_blocking(lambda: extractor.extract(package, output_directory, options))
    except (UnityPackageError, OSError) as e:
        raise _http_error(e)

    data = result.to_dict()
    return ExtractResponse(
        correlation_id=result.correlation_id,
        package_path=result.package_path,
        output_directory=result.output_directory,
        assets_extracted=result.assets_extracted,
        extracted_files=result.extracted_files,
        sidecar_files=result.sidecar_files,
        total_bytes=result.total_bytes,
        duration_ms=data["duration_ms"],
        diagnostics=data["diagnostics"],
        scan_result=data["scan_result"],
    )


@router.post("/preview", response_model=PreviewResponse)
async def preview_package(request: PreviewRequest):
    """List a package's assets without extracting it."""
    package = _validate_package(request.package_path)
    config = Config.from_env()
    builder = UnityPackagePreviewBuilder(
        request.preview_max_bytes or config.preview_max_bytes,
        max_compression_ratio=config.max_compression_ratio,
    )

    try:
        result = await _run_blocking(lambda: builder.build_preview(package))
    except (UnityPackageError, OSError) as e:
        raise _http_error(e)

    dispose_preview(result)
    data = result.to_dict()
    return PreviewResponse(
        package_path=data["package_path"],
        package_name=data["package_name"],
        package_size_bytes=data["package_size_bytes"],
        last_modified=data["last_modified"],
        total_asset_size_bytes=data["total_asset_size_bytes"],
        assets_count=data["assets_count"],
        assets=data["assets"],
        directories_to_prune=data["directories_to_prune"],
    )


@router.post("/scan", response_model=ScanResponse)
async def scan_package(request: ScanRequest):
    """Scan a package for malicious content without extracting it."""
    package = _validate_package(request.package_path)
    config = Config.from_env()
    scanner = _make_scanner(_resolve_rules_path(request.rules_path, config), config)

    try:
        result = await _run_blocking(lambda: scanner.scan_package(package))
    except (UnityPackageError, OSError) as e:
        raise _http_error(e)

    return ScanResponse(**result.to_dict())
