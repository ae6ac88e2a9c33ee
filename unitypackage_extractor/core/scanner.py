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
Malicious-content scanner for Unity packages.

The scanner screens script-like assets against a versioned signature rule set
(see ``rules/patterns.py``) and aggregates the matches into threats, one per
threat type and severity. A package is flagged as malicious when it carries at
least one HIGH threat, or at least two distinct MEDIUM threats.

It can work on extracted files, on in-memory contents, or directly on a
``.unitypackage`` without writing anything to the output directory.
"""

import logging
import tempfile
import threading
import time
from collections.abc import Iterable
from pathlib import Path

from .archive_reader import DEFAULT_MAX_COMPRESSION_RATIO, ArchiveReader
from .assembler import AssetAssembler, LogicalAsset, OversizePolicy
from .exceptions import ArchiveCorruptError, DecompressionBombSuspectedError
from .models import MIB, MaliciousThreat, ScanResult, ThreatMatch, ThreatSeverity, ThreatType
from .rules.patterns import URL_RE, RuleLoader, RuleSet, SignatureRule, make_snippet

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONTENT_BYTES = 5 * MIB
TEXT_PROBE_BYTES = 4096
MAX_CONTROL_CHAR_RATIO = 0.2

_UTF16_BOMS = (b"\xff\xfe", b"\xfe\xff")
_TEXT_CONTROL_BYTES = frozenset(b"\t\n\r\f\b")


def looks_like_text(data: bytes) -> bool:
    """Heuristic text check on the first few KiB of *data*."""
    probe = data[:TEXT_PROBE_BYTES]
    if not probe:
        return True
    if probe.startswith(_UTF16_BOMS):
        return True
    if b"\x00" in probe:
        return False
    control = sum(1 for b in probe if b < 32 and b not in _TEXT_CONTROL_BYTES)
    return control / len(probe) <= MAX_CONTROL_CHAR_RATIO


def decode_text(data: bytes) -> str:
    if data.startswith(_UTF16_BOMS):
        return data.decode("utf-16", errors="replace")
    return data.decode("utf-8", errors="replace").lstrip("\ufeff")


def is_malicious_verdict(threats: list[MaliciousThreat]) -> bool:
    """HIGH anywhere, or two distinct MEDIUM threats."""
    if any(t.severity == ThreatSeverity.HIGH for t in threats):
        return True
    return len({t.threat_type for t in threats if t.severity == ThreatSeverity.MEDIUM}) >= 2


class _ThreatAccumulator:
    def __init__(self, rule_set: RuleSet):
        self.rule_set = rule_set
        self._threats: dict[tuple[ThreatType, ThreatSeverity], MaliciousThreat] = {}

    def add(self, threat_type: ThreatType, severity: ThreatSeverity, match: ThreatMatch) -> None:
        key = (threat_type, severity)
        threat = self._threats.get(key)
        if threat is None:
            threat = MaliciousThreat(threat_type, severity, self.rule_set.describe(threat_type))
            self._threats[key] = threat
        if len(threat.matches) < self.rule_set.max_matches_per_threat:
            threat.matches.append(match)

    def threats(self) -> list[MaliciousThreat]:
        return sorted(self._threats.values(), key=lambda t: (-t.severity.rank, t.threat_type.value))


class MaliciousContentScanner:
    """Screens Unity package content against signature rules.

    Example:
        >>> scanner = MaliciousContentScanner()
        >>> result = scanner.scan_package("Pack.unitypackage")
        >>> if result.is_malicious:
        ...     for threat in result.threats:
        ...         print(threat.severity.value, threat.description)

    Args:
        rule_set: pre-loaded rules; takes precedence over ``rules_path``
        rules_path: YAML file or rule-set directory; defaults to the bundled rules
        max_content_bytes: size ceiling; larger files are skipped and never count as evidence
        max_compression_ratio: decompression-bomb threshold for ``scan_package``
    """

    def __init__(
        self,
        rule_set: RuleSet | None = None,
        rules_path: str | Path | None = None,
        max_content_bytes: int = DEFAULT_MAX_CONTENT_BYTES,
        max_compression_ratio: float = DEFAULT_MAX_COMPRESSION_RATIO,
    ):
        if rule_set is None:
            rule_set = RuleLoader(Path(rules_path) if rules_path else None).load_rule_set()
        self.rule_set = rule_set
        self.max_content_bytes = max_content_bytes if max_content_bytes > 0 else DEFAULT_MAX_CONTENT_BYTES
        self.max_compression_ratio = max_compression_ratio

    @property
    def rule_set_version(self) -> str:
        return self.rule_set.version

    # ------------------------------------------------------------------
    # Public entry points
    # ------------------------------------------------------------------

    def scan_contents(self, package_path: str, contents: Iterable[tuple[str, bytes | str]]) -> ScanResult:
        """Scan ``(relative_path, content)`` pairs that are already in memory."""
        started = time.monotonic()
        result = ScanResult(package_path=str(package_path), rule_set_version=self.rule_set.version)
        accumulator = _ThreatAccumulator(self.rule_set)
        for relative_path, content in contents:
            self._scan_one(relative_path, content, result, accumulator)
        return self._finish(result, accumulator, started)

    def scan_files(self, package_path: str, files: Iterable[tuple[str, str | Path]]) -> ScanResult:
        """Scan files on disk, given as ``(relative_path, absolute_path)`` pairs.

        Files that cannot be read are counted as skipped.
        """
        started = time.monotonic()
        result = ScanResult(package_path=str(package_path), rule_set_version=self.rule_set.version)
        accumulator = _ThreatAccumulator(self.rule_set)
        for relative_path, file_path in files:
            if not self.rule_set.is_scannable(relative_path):
                result.files_skipped += 1
                continue
            try:
                with open(file_path, "rb") as fh:
                    data = fh.read(self.max_content_bytes + 1)
            except OSError as e:
                logger.warning("Could not read %s for scanning: %s", file_path, e)
                result.files_skipped += 1
                continue
            if len(data) > self.max_content_bytes:
                self._skip_oversize(relative_path, result)
                continue
            self._scan_one(relative_path, data, result, accumulator)
        return self._finish(result, accumulator, started)

    def scan_assets(self, package_path: str, assets: Iterable[LogicalAsset]) -> ScanResult:
        """Scan assembled assets without writing them anywhere.

        The assets stay owned by the caller.
        """
        started = time.monotonic()
        result = ScanResult(package_path=str(package_path), rule_set_version=self.rule_set.version)
        accumulator = _ThreatAccumulator(self.rule_set)
        for asset in assets:
            self._scan_asset(asset, result, accumulator)
        return self._finish(result, accumulator, started)

    def scan_package(
        self,
        package_path: str | Path,
        cancel_event: threading.Event | None = None,
    ) -> ScanResult:
        """Scan a ``.unitypackage`` directly from the archive.

        Archives that cannot be decoded, or that look like decompression
        bombs, yield a result with ``scan_skipped`` set instead of raising.

        Raises:
            FileNotFoundError: the package does not exist
            ExtractionCancelledError: ``cancel_event`` was set
        """
        path = Path(package_path)
        if not path.is_file():
            raise FileNotFoundError(f"Unity package not found: {path}")

        started = time.monotonic()
        result = ScanResult(package_path=str(path), rule_set_version=self.rule_set.version)
        accumulator = _ThreatAccumulator(self.rule_set)
        logger.info("Scanning package for malicious content: %s", path)

        with tempfile.TemporaryDirectory(prefix="unitypackage_scan_") as spool:
            reader = ArchiveReader(path, max_compression_ratio=self.max_compression_ratio)
            assembler = AssetAssembler(
                self.max_content_bytes,
                oversize_policy=OversizePolicy.TRUNCATE,
                spool_directory=spool,
            )
            cancel_check = cancel_event.is_set if cancel_event is not None else None
            assets = assembler.assemble(reader.entries(), cancel_check=cancel_check)
            try:
                for asset in assets:
                    try:
                        self._scan_asset(asset, result, accumulator)
                    finally:
                        asset.close()
            except (ArchiveCorruptError, DecompressionBombSuspectedError) as e:
                logger.warning("Scan skipped for %s: %s", path, e)
                result.scan_skipped = True
                result.skip_reason = str(e)
            finally:
                assets.close()

        return self._finish(result, accumulator, started)

    # ------------------------------------------------------------------
    # Matching
    # ------------------------------------------------------------------

    def _scan_asset(self, asset: LogicalAsset, result: ScanResult, accumulator: _ThreatAccumulator) -> None:
        if not self.rule_set.is_scannable(asset.relative_path):
            result.files_skipped += 1
            return
        if asset.size > self.max_content_bytes or asset.is_truncated:
            self._skip_oversize(asset.relative_path, result)
            return
        data = asset.asset.read_bytes()
        self._scan_one(asset.relative_path, data, result, accumulator)

    def _skip_oversize(self, relative_path: str, result: ScanResult) -> None:
        logger.debug("Skipping oversized content: %s (limit %d bytes)", relative_path, self.max_content_bytes)
        result.files_skipped += 1
        result.files_skipped_oversize += 1

    def _scan_one(
        self,
        relative_path: str,
        content: bytes | str,
        result: ScanResult,
        accumulator: _ThreatAccumulator,
    ) -> None:
        if not self.rule_set.is_scannable(relative_path):
            result.files_skipped += 1
            return
        size = len(content) if isinstance(content, bytes) else len(content.encode("utf-8", errors="replace"))
        if size > self.max_content_bytes:
            self._skip_oversize(relative_path, result)
            return
        if isinstance(content, bytes):
            if not looks_like_text(content):
                logger.debug("Skipping binary content: %s", relative_path)
                result.files_skipped += 1
                return
            text = decode_text(content)
        else:
            text = content
        result.files_scanned += 1

        hits = self.scan_text(relative_path, text)
        has_execution_primitive = any(rule.execution_primitive for rule, _ in hits)
        for rule, matches in hits:
            severity = rule.severity
            if rule.threat_type == ThreatType.UNSAFE_LINKS and has_execution_primitive:
                severity = ThreatSeverity.HIGH
            for m in matches:
                accumulator.add(
                    rule.threat_type,
                    severity,
                    ThreatMatch(
                        file_path=relative_path,
                        snippet=make_snippet(m.text),
                        rule_id=rule.id,
                        line_number=m.line_number,
                    ),
                )

    def scan_text(self, relative_path: str, text: str) -> list[tuple[SignatureRule, list]]:
        """Run every applicable rule over *text* and return the rules that hit."""
        urls = None
        hits: list[tuple[SignatureRule, list]] = []
        for rule in self.rule_set.rules:
            if not rule.applies_to(relative_path):
                continue
            if rule.match == "url_host" and urls is None:
                urls = list(URL_RE.finditer(text))
            try:
                matches = rule.scan_content(
                    text,
                    max_matches=self.rule_set.max_matches_per_rule,
                    allowed_domains=self.rule_set.allowed_domains,
                    urls=urls,
                )
            except Exception as e:
                logger.warning("Rule %s failed on %s: %s", rule.id, relative_path, e)
                continue
            if matches:
                hits.append((rule, matches))
        return hits

    def _finish(self, result: ScanResult, accumulator: _ThreatAccumulator, started: float) -> ScanResult:
        result.threats = accumulator.threats()
        result.is_malicious = is_malicious_verdict(result.threats)
        max_severity = result.max_severity
        logger.info(
            "Scan completed | package='%s' | malicious=%s | threats=%d | max_severity=%s | scanned=%d | "
            "skipped=%d | oversize=%d | rules=%s | duration=%.2fs",
            result.package_path,
            result.is_malicious,
            len(result.threats),
            max_severity.value if max_severity else None,
            result.files_scanned,
            result.files_skipped,
            result.files_skipped_oversize,
            result.rule_set_version,
            time.monotonic() - started,
        )
        return result


def scan_package(
    package_path: str | Path,
    rules_path: str | Path | None = None,
    cancel_event: threading.Event | None = None,
) -> ScanResult:
    """Convenience function to scan a package with the bundled or given rules."""
    return MaliciousContentScanner(rules_path=rules_path).scan_package(package_path, cancel_event)
