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

"""Command-line interface for the Unity package extractor."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from collections.abc import Callable
from pathlib import Path

from ..config.config import Config
from ..core.exceptions import ExtractionCancelledError, ExtractionIOError, UnityPackageError
from ..core.extractor import UnityPackageExtractor
from ..core.models import ExtractionResult, PreviewResult, ScanResult, ThreatSeverity
from ..core.preview import UnityPackagePreviewBuilder, dispose_preview

logger = logging.getLogger("unitypackage_extractor.cli")


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _load_config(args: argparse.Namespace) -> Config:
    """Build a ``Config`` from the environment (or ``--env-file``) and apply CLI overrides."""
    env_file = getattr(args, "env_file", None)
    config = Config.from_file(Path(env_file)) if env_file else Config.from_env()

    overrides = {
        "max_asset_bytes": getattr(args, "max_asset_bytes", None),
        "max_package_bytes": getattr(args, "max_package_bytes", None),
        "max_assets": getattr(args, "max_assets", None),
        "temporary_directory": getattr(args, "temp_dir", None),
        "max_workers": getattr(args, "workers", None),
        "rules_path": getattr(args, "rules_file", None),
        "scan_max_bytes": getattr(args, "scan_max_bytes", None),
        "preview_max_bytes": getattr(args, "preview_max_bytes", None),
    }
    for name, value in overrides.items():
        if value is not None:
            setattr(config, name, value)
    if getattr(args, "organize", False):
        config.organize_by_categories = True
    if getattr(args, "scan", False):
        config.scan_after_extract = True
    config.output_format = getattr(args, "format", config.output_format)
    return config


def _make_scanner(config: Config):
    from ..core.scanner import MaliciousContentScanner

    return MaliciousContentScanner(
        rules_path=config.rules_path,
        max_content_bytes=config.scan_max_bytes,
        max_compression_ratio=config.max_compression_ratio,
    )


def _make_status_printer(args: argparse.Namespace) -> Callable[[str], None]:
    """Return a printer that sends to stderr when JSON output is active."""
    is_json = getattr(args, "format", "summary") == "json"

    def _print(msg: str) -> None:
        print(msg, file=sys.stderr if is_json else sys.stdout)

    return _print


def _write_output(args: argparse.Namespace, output: str) -> None:
    """Write *output* to a file or stdout."""
    if getattr(args, "report", None):
        with open(args.report, "w", encoding="utf-8") as fh:
            fh.write(output)
        print(f"Report saved to: {args.report}", file=sys.stderr)
    else:
        print(output)


def _to_json(data: dict) -> str:
    return json.dumps(data, indent=2, default=str)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def extract_command(args: argparse.Namespace) -> int:
    """Handle the ``extract`` command."""
    package = Path(args.package)
    if not package.is_file():
        print(f"Error: Package does not exist: {package}", file=sys.stderr)
        return 1

    config = _load_config(args)
    status = _make_status_printer(args)
    try:
        scanner = _make_scanner(config) if config.scan_after_extract else None
    except RuntimeError as e:
        print(f"Error loading rules: {e}", file=sys.stderr)
        return 1
    extractor = UnityPackageExtractor(scanner=scanner, max_compression_ratio=config.max_compression_ratio)

    progress = None
    if args.verbose:

        def progress(update) -> None:
            status(f"  [{update.assets_written}] {update.relative_path}")

    try:
        result = extractor.extract(package, Path(args.output_dir), config.to_options(), progress=progress)
    except ExtractionIOError as e:
        print(f"Error: {e.user_message}", file=sys.stderr)
        return 1
    except (ExtractionCancelledError, KeyboardInterrupt):
        print("Extraction cancelled; no files were left behind.", file=sys.stderr)
        return 130
    except (UnityPackageError, FileNotFoundError) as e:
        print(f"Error extracting package: {e}", file=sys.stderr)
        return 1
    except Exception as e:
        print(f"Unexpected error: {e}", file=sys.stderr)
        return 1

    if config.output_format == "json":
        _write_output(args, _to_json(result.to_dict()))
    else:
        _write_output(args, _generate_extraction_summary(result))

    if args.fail_on_malicious and result.scan_result is not None and result.scan_result.is_malicious:
        return 1
    return 0


def preview_command(args: argparse.Namespace) -> int:
    """Handle the ``preview`` command."""
    package = Path(args.package)
    if not package.is_file():
        print(f"Error: Package does not exist: {package}", file=sys.stderr)
        return 1

    config = _load_config(args)
    builder = UnityPackagePreviewBuilder(config.preview_max_bytes, max_compression_ratio=config.max_compression_ratio)
    try:
        result = builder.build_preview(package)
    except (UnityPackageError, OSError) as e:
        print(f"Error previewing package: {e}", file=sys.stderr)
        return 1

    try:
        if config.output_format == "json":
            _write_output(args, _to_json(result.to_dict()))
        else:
            _write_output(args, _generate_preview_summary(result))
    finally:
        dispose_preview(result)
    return 0


def scan_command(args: argparse.Namespace) -> int:
    """Handle the ``scan`` command."""
    package = Path(args.package)
    if not package.is_file():
        print(f"Error: Package does not exist: {package}", file=sys.stderr)
        return 1

    config = _load_config(args)
    try:
        scanner = _make_scanner(config)
    except RuntimeError as e:
        print(f"Error loading rules: {e}", file=sys.stderr)
        return 1

    try:
        result = scanner.scan_package(package)
    except (UnityPackageError, OSError) as e:
        print(f"Error scanning package: {e}", file=sys.stderr)
        return 1

    if config.output_format == "json":
        _write_output(args, _to_json(result.to_dict()))
    else:
        _write_output(args, _generate_scan_summary(result))

    if args.fail_on_malicious and result.is_malicious:
        return 1
    return 0


def validate_rules_command(args: argparse.Namespace) -> int:
    """Handle the ``validate-rules`` command."""
    from ..core.rules.patterns import RuleLoader

    try:
        loader = RuleLoader(Path(args.rules_file)) if args.rules_file else RuleLoader()
        rule_set = loader.load_rule_set()
        print(f"[OK] Successfully loaded {len(rule_set.rules)} rules")
        print(f"Rule set: {rule_set.name} v{rule_set.version}\n")
        print("Rules by threat type:")
        for threat_type, type_rules in loader.rules_by_threat_type.items():
            print(f"  - {threat_type.value}: {len(type_rules)} rules")
        return 0
    except Exception as e:
        print(f"[FAIL] Error validating rules: {e}", file=sys.stderr)
        return 1


# ---------------------------------------------------------------------------
# Summary formatters
# ---------------------------------------------------------------------------


def _format_bytes(size: int) -> str:
    value = float(size)
    for unit in ("B", "KiB", "MiB", "GiB"):
        if value < 1024 or unit == "GiB":
            return f"{value:.0f} {unit}" if unit == "B" else f"{value:.1f} {unit}"
        value /= 1024
    return f"{size} B"


def _generate_extraction_summary(result: ExtractionResult) -> str:
    lines = [
        "=" * 60,
        f"Package: {result.package_path}",
        "=" * 60,
        f"Output Directory: {result.output_directory}",
        f"Assets Extracted: {result.assets_extracted}",
        f"Meta Files: {len(result.sidecar_files)}",
        f"Total Size: {_format_bytes(result.total_bytes)}",
        f"Duration: {result.duration_seconds:.2f}s",
        f"Correlation ID: {result.correlation_id}",
    ]
    if result.diagnostics:
        lines.append("")
        lines.append(f"Warnings ({len(result.diagnostics)}):")
        for diagnostic in result.diagnostics[:20]:
            lines.append(f"  - {diagnostic.kind.value} [{diagnostic.guid}] {diagnostic.detail}")
    if result.scan_result is not None:
        lines.append("")
        lines.append(_generate_scan_summary(result.scan_result))
    return "\n".join(lines)


def _generate_preview_summary(result: PreviewResult) -> str:
    lines = [
        "=" * 60,
        f"Package: {result.package_name}",
        "=" * 60,
        f"Package Size: {_format_bytes(result.package_size_bytes)}",
        f"Assets: {len(result.assets)}",
        f"Total Asset Size: {_format_bytes(result.total_asset_size_bytes)}",
        "",
    ]
    for asset in result.assets:
        flags = []
        if asset.has_meta_file:
            flags.append("meta")
        if asset.preview_image_data is not None:
            flags.append("preview")
        if asset.is_asset_data_truncated:
            flags.append("truncated")
        suffix = f"  [{', '.join(flags)}]" if flags else ""
        lines.append(f"  {_format_bytes(asset.asset_size_bytes):>10s}  {asset.relative_path}{suffix}")
    if result.directories_to_prune:
        lines.append("")
        lines.append("Directories to prune:")
        for directory in sorted(result.directories_to_prune):
            lines.append(f"  - {directory}")
    return "\n".join(lines)


def _generate_scan_summary(result: ScanResult) -> str:
    if result.scan_skipped:
        status = f"[SKIPPED] {result.skip_reason}"
    elif result.is_malicious:
        status = "[FAIL] MALICIOUS CONTENT FOUND"
    else:
        status = "[OK] NO MALICIOUS CONTENT FOUND"
    max_severity = result.max_severity
    lines = [
        "=" * 60,
        f"Scan: {result.package_path}",
        "=" * 60,
        f"Status: {status}",
        f"Max Severity: {max_severity.value if max_severity else 'NONE'}",
        f"Total Threats: {len(result.threats)}",
        f"Files Scanned: {result.files_scanned} (skipped {result.files_skipped})",
        f"Rule Set: {result.rule_set_version}",
    ]
    if result.threats:
        lines.append("")
        lines.append("Threats:")
        for severity in (ThreatSeverity.HIGH, ThreatSeverity.MEDIUM, ThreatSeverity.LOW):
            for threat in (t for t in result.threats if t.severity == severity):
                lines.append(f"  {severity.value:>6s}: {threat.threat_type.value} ({len(threat.matches)} matches)")
                for match in threat.matches[:3]:
                    location = f"{match.file_path}:{match.line_number}" if match.line_number else match.file_path
                    lines.append(f"          {location}  {match.snippet}")
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------


def _add_common_flags(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--format", choices=["summary", "json"], default="summary", help="Output format")
    parser.add_argument("--report", help="Write the report to this file instead of stdout")
    parser.add_argument("--env-file", metavar="PATH", help="Load UNITYPACKAGE_* settings from a .env file")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")


def _add_limit_flags(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--max-asset-bytes", type=int, help="Largest single asset accepted (bytes)")
    parser.add_argument("--max-package-bytes", type=int, help="Largest total extracted size accepted (bytes)")
    parser.add_argument("--max-assets", type=int, help="Largest number of assets accepted")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="unitypackage-extractor",
        description="Unity Package Extractor - safe extraction and screening of .unitypackage archives",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  unitypackage-extractor extract Pack.unitypackage out/
  unitypackage-extractor extract Pack.unitypackage out/ --organize --scan
  unitypackage-extractor preview Pack.unitypackage --format json
  unitypackage-extractor scan Pack.unitypackage --fail-on-malicious
  unitypackage-extractor validate-rules --rules-file my_rules/
        """,
    )
    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    # -- extract -----------------------------------------------------------
    extract_p = subparsers.add_parser("extract", help="Extract a package into a directory")
    extract_p.add_argument("package", help="Path to the .unitypackage file")
    extract_p.add_argument("output_dir", help="Directory to extract into")
    extract_p.add_argument("--organize", action="store_true", help="Group assets into category folders")
    extract_p.add_argument("--temp-dir", help="Directory for staging files (default: inside the output directory)")
    extract_p.add_argument("--workers", type=int, help="Number of writer threads")
    extract_p.add_argument("--scan", action="store_true", help="Scan extracted files for malicious content")
    extract_p.add_argument("--rules-file", help="Path to YAML rules file or directory (default: built-in signatures)")
    extract_p.add_argument(
        "--fail-on-malicious", action="store_true", help="Exit with error if the scan flags the package"
    )
    _add_limit_flags(extract_p)
    _add_common_flags(extract_p)

    # -- preview -----------------------------------------------------------
    preview_p = subparsers.add_parser("preview", help="List a package's assets without extracting")
    preview_p.add_argument("package", help="Path to the .unitypackage file")
    preview_p.add_argument("--preview-max-bytes", type=int, help="Bytes of content kept per asset")
    _add_common_flags(preview_p)

    # -- scan --------------------------------------------------------------
    scan_p = subparsers.add_parser("scan", help="Scan a package for malicious content without extracting")
    scan_p.add_argument("package", help="Path to the .unitypackage file")
    scan_p.add_argument("--rules-file", help="Path to YAML rules file or directory (default: built-in signatures)")
    scan_p.add_argument("--scan-max-bytes", type=int, help="Bytes of content screened per file")
    scan_p.add_argument("--fail-on-malicious", action="store_true", help="Exit with error if the package is flagged")
    _add_common_flags(scan_p)

    # -- validate-rules ----------------------------------------------------
    vr_p = subparsers.add_parser("validate-rules", help="Validate rule signatures")
    vr_p.add_argument("--rules-file", help="Path to YAML rules file or directory (default: built-in signatures)")
    vr_p.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")

    return parser


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    _configure_logging(getattr(args, "verbose", False))

    dispatch = {
        "extract": extract_command,
        "preview": preview_command,
        "scan": scan_command,
        "validate-rules": validate_rules_command,
    }
    handler = dispatch.get(args.command)
    if handler:
        return handler(args)

    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
