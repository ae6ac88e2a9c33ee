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
Unity Package Extractor - safe extraction and screening of .unitypackage archives.
"""

try:
    from ._version import __version__
except ImportError:
    __version__ = "0.0.0+unknown"

__author__ = "Cisco Systems, Inc."


def __getattr__(name: str):
    """Lazy-load public API symbols on first access.

    Keeps ``python -m unitypackage_extractor.cli.cli`` from importing the
    FastAPI stack or compiling rule sets before they are needed.
    """
    _lazy_map = {
        "Config": (".config.config", "Config"),
        "UnityPackageConstants": (".config.constants", "UnityPackageConstants"),
        "ExtractionLimits": (".core.models", "ExtractionLimits"),
        "ExtractionOptions": (".core.models", "ExtractionOptions"),
        "ExtractionResult": (".core.models", "ExtractionResult"),
        "PreviewResult": (".core.models", "PreviewResult"),
        "ScanResult": (".core.models", "ScanResult"),
        "ThreatSeverity": (".core.models", "ThreatSeverity"),
        "ThreatType": (".core.models", "ThreatType"),
        "UnityPackageExtractor": (".core.extractor", "UnityPackageExtractor"),
        "extract_package": (".core.extractor", "extract_package"),
        "UnityPackagePreviewBuilder": (".core.preview", "UnityPackagePreviewBuilder"),
        "build_preview": (".core.preview", "build_preview"),
        "MaliciousContentScanner": (".core.scanner", "MaliciousContentScanner"),
        "scan_package": (".core.scanner", "scan_package"),
    }
    if name in _lazy_map:
        module_path, attr = _lazy_map[name]
        import importlib

        mod = importlib.import_module(module_path, __package__)
        val = getattr(mod, attr)
        # Cache on the module so __getattr__ is only called once per symbol
        globals()[name] = val
        return val
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = [
    "UnityPackageExtractor",
    "extract_package",
    "UnityPackagePreviewBuilder",
    "build_preview",
    "MaliciousContentScanner",
    "scan_package",
    "ExtractionLimits",
    "ExtractionOptions",
    "ExtractionResult",
    "PreviewResult",
    "ScanResult",
    "ThreatSeverity",
    "ThreatType",
    "Config",
    "UnityPackageConstants",
]
