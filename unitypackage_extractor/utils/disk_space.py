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
Disk-full detection and user-facing messages.

The extractor only depends on the two callables exported here, so hosts can
inject their own classification or wording.
"""

import errno
import os
from pathlib import Path

# ERROR_HANDLE_DISK_FULL and ERROR_DISK_FULL
_WINDOWS_DISK_FULL_CODES = frozenset({39, 112})
_DISK_FULL_ERRNOS = frozenset({errno.ENOSPC, errno.EDQUOT})
_DISK_FULL_MESSAGES = ("not enough space", "no space left", "disk full", "disk quota exceeded")

FALLBACK_MESSAGE = "Not enough disk space. Please free up space or choose a different location and try again."


def _iter_chain(exc: BaseException):
    seen: set[int] = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        current = current.__cause__ or current.__context__


def is_disk_full(exc: BaseException) -> bool:
    """Return True when *exc*, or anything in its cause chain, means the disk is full."""
    for error in _iter_chain(exc):
        if isinstance(error, OSError):
            if error.errno in _DISK_FULL_ERRNOS:
                return True
            if getattr(error, "winerror", None) in _WINDOWS_DISK_FULL_CODES:
                return True
        message = str(error).lower()
        if any(marker in message for marker in _DISK_FULL_MESSAGES):
            return True
    return False


def _volume_label(path: str | Path) -> str | None:
    try:
        resolved = Path(path).resolve()
    except (OSError, RuntimeError):
        return None
    drive = resolved.drive or resolved.anchor
    if drive and drive != os.sep:
        return drive
    # POSIX: report the mount point that holds the path
    candidate = resolved
    while not candidate.exists() and candidate != candidate.parent:
        candidate = candidate.parent
    while candidate != candidate.parent and not os.path.ismount(candidate):
        candidate = candidate.parent
    return str(candidate) if str(candidate) else None


def build_friendly_message(path: str | Path | None) -> str:
    """Describe a disk-full failure for *path* in words a user can act on."""
    if not path:
        return FALLBACK_MESSAGE
    label = _volume_label(path)
    if not label:
        return FALLBACK_MESSAGE
    return f"Not enough disk space on {label}. Please free up space or choose a different location and try again."
