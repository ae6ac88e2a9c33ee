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
Signature rules for malicious-content screening.

Rules are data: a rule set is a directory holding a ``ruleset.yaml`` manifest
(version, scannable extensions, allowlisted domains, match caps) next to one
or more YAML files that each contain a list of rules. A single YAML file may
also hold a whole rule set as a mapping with a ``rules`` key, or just a list
of rules. Swapping the directory swaps the detection logic without touching
the matching engine.

Three match kinds are supported:

- ``regex``: any of ``patterns`` found in the content
- ``url_host``: a URL whose host is, or is a subdomain of, one of ``hosts``;
  ``ip_literal: true`` instead matches URLs whose host is a raw IP address
- ``sequence``: ``patterns`` found in order, each starting within ``window``
  characters of the end of the previous one
"""

import ipaddress
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from ..models import ThreatSeverity, ThreatType

logger = logging.getLogger(__name__)

MANIFEST_FILE = "ruleset.yaml"
MAX_SNIPPET_CHARS = 200
DEFAULT_SEQUENCE_WINDOW = 1000

# Deliberately loose; hosts are validated separately
URL_RE = re.compile(r"https?://[^\s\"'<>()\[\]{}`\\]{1,2048}", re.IGNORECASE)

DEFAULT_SCANNABLE_EXTENSIONS = (".cs", ".js", ".boo", ".dll.txt")


def make_snippet(text: str) -> str:
    """Collapse line breaks and bound the length of a matched fragment."""
    cleaned = text.replace("\r", " ").replace("\n", " ").strip()
    if len(cleaned) > MAX_SNIPPET_CHARS:
        cleaned = cleaned[:MAX_SNIPPET_CHARS] + "..."
    return cleaned


def url_host(url: str) -> str:
    """Return the lower-cased host of *url* without credentials, port or brackets."""
    rest = url.split("://", 1)[-1]
    authority = re.split(r"[/?#]", rest, maxsplit=1)[0]
    authority = authority.rsplit("@", 1)[-1]
    if authority.startswith("["):
        return authority[1:].split("]", 1)[0].lower()
    return authority.split(":", 1)[0].rstrip(".").lower()


def host_matches(host: str, domain: str) -> bool:
    domain = domain.lower().lstrip(".")
    return host == domain or host.endswith("." + domain)


def is_ip_literal(host: str) -> bool:
    try:
        ipaddress.ip_address(host)
    except ValueError:
        return False
    return True


@dataclass
class RuleMatch:
    """A raw match produced by a rule against one file."""

    rule_id: str
    start: int
    end: int
    text: str
    line_number: int


class SignatureRule:
    """Represents a single detection rule."""

    MATCH_KINDS = ("regex", "url_host", "sequence")

    def __init__(self, rule_data: dict[str, Any]):
        self.id = rule_data["id"]
        self.threat_type = ThreatType(rule_data["threat_type"])
        self.severity = ThreatSeverity(str(rule_data["severity"]).upper())
        self.description = rule_data["description"]
        self.match = rule_data.get("match", "regex")
        if self.match not in self.MATCH_KINDS:
            raise ValueError(f"Unknown match kind '{self.match}'")
        self.patterns: list[str] = list(rule_data.get("patterns", []))
        self.exclude_patterns: list[str] = list(rule_data.get("exclude_patterns", []))
        self.hosts: list[str] = [h.lower() for h in rule_data.get("hosts", [])]
        self.ip_literal = bool(rule_data.get("ip_literal", False))
        self.window = int(rule_data.get("window", DEFAULT_SEQUENCE_WINDOW))
        self.execution_primitive = bool(rule_data.get("execution_primitive", False))
        self.file_types: list[str] = [t.lower() for t in rule_data.get("file_types", [])]

        flags = re.IGNORECASE if rule_data.get("ignore_case", True) else 0

        # Compile regex patterns
        self.compiled_patterns: list[re.Pattern[str]] = []
        for pattern in self.patterns:
            try:
                self.compiled_patterns.append(re.compile(pattern, flags))
            except re.error as e:
                logger.warning("Failed to compile pattern '%s' for rule %s: %s", pattern, self.id, e)

        # Compile exclude patterns
        self.compiled_exclude_patterns: list[re.Pattern[str]] = []
        for pattern in self.exclude_patterns:
            try:
                self.compiled_exclude_patterns.append(re.compile(pattern, flags))
            except re.error as e:
                logger.warning("Failed to compile exclude pattern '%s' for rule %s: %s", pattern, self.id, e)

        if self.match == "sequence" and len(self.compiled_patterns) != len(self.patterns):
            raise ValueError(f"Sequence rule {self.id} has patterns that failed to compile")
        if self.match == "url_host" and not (self.hosts or self.ip_literal):
            raise ValueError(f"url_host rule {self.id} needs 'hosts' or 'ip_literal'")

    def applies_to(self, file_path: str) -> bool:
        """Check if this rule applies to the given file."""
        if not self.file_types:
            return True  # Rule applies to all scannable files
        lowered = file_path.lower()
        return any(lowered.endswith(t) for t in self.file_types)

    def _excluded(self, content: str, start: int) -> bool:
        if not self.compiled_exclude_patterns:
            return False
        line_start = content.rfind("\n", 0, start) + 1
        line_end = content.find("\n", start)
        line = content[line_start : line_end if line_end != -1 else len(content)]
        return any(p.search(line) for p in self.compiled_exclude_patterns)

    def scan_content(
        self,
        content: str,
        max_matches: int = 5,
        allowed_domains: tuple[str, ...] = (),
        urls: list[re.Match[str]] | None = None,
    ) -> list[RuleMatch]:
        """
        Scan content for rule violations.

        Returns:
            Up to *max_matches* matches, in content order
        """
        if self.match == "regex":
            found = self._scan_regex(content, max_matches)
        elif self.match == "url_host":
            found = self._scan_urls(content, max_matches, allowed_domains, urls)
        else:
            found = self._scan_sequence(content, max_matches)
        found.sort(key=lambda m: m.start)
        return found[:max_matches]

    def _make_match(self, content: str, start: int, end: int) -> RuleMatch:
        return RuleMatch(
            rule_id=self.id,
            start=start,
            end=end,
            text=content[start:end],
            line_number=content.count("\n", 0, start) + 1,
        )

    def _scan_regex(self, content: str, max_matches: int) -> list[RuleMatch]:
        matches: list[RuleMatch] = []
        for pattern in self.compiled_patterns:
            for m in pattern.finditer(content):
                if not m.group(0).strip() or self._excluded(content, m.start()):
                    continue
                matches.append(self._make_match(content, m.start(), m.end()))
                if len(matches) >= max_matches:
                    return matches
        return matches

    def _scan_urls(
        self,
        content: str,
        max_matches: int,
        allowed_domains: tuple[str, ...],
        urls: list[re.Match[str]] | None,
    ) -> list[RuleMatch]:
        matches: list[RuleMatch] = []
        seen: set[str] = set()
        for m in urls if urls is not None else URL_RE.finditer(content):
            url = m.group(0)
            host = url_host(url)
            if not host or any(host_matches(host, d) for d in allowed_domains):
                continue
            if self.ip_literal:
                hit = is_ip_literal(host)
            else:
                hit = any(host_matches(host, h) for h in self.hosts)
            if not hit or url.lower() in seen or self._excluded(content, m.start()):
                continue
            seen.add(url.lower())
            matches.append(self._make_match(content, m.start(), m.end()))
            if len(matches) >= max_matches:
                break
        return matches

    def _scan_sequence(self, content: str, max_matches: int) -> list[RuleMatch]:
        # Chained searches inside bounded windows instead of one ".*?"-joined
        # regex, which keeps matching linear on large files.
        matches: list[RuleMatch] = []
        first, rest = self.compiled_patterns[0], self.compiled_patterns[1:]
        position = 0
        while len(matches) < max_matches:
            head = first.search(content, position)
            if head is None:
                break
            end = head.end()
            for pattern in rest:
                step = pattern.search(content, end, min(len(content), end + self.window))
                if step is None:
                    end = -1
                    break
                end = step.end()
            if end != -1 and not self._excluded(content, head.start()):
                matches.append(self._make_match(content, head.start(), end))
                position = end
            else:
                position = head.end()
        return matches


@dataclass
class RuleSet:
    """A versioned collection of rules plus the settings that go with them."""

    version: str
    name: str = "custom"
    rules: list[SignatureRule] = field(default_factory=list)
    scannable_extensions: tuple[str, ...] = DEFAULT_SCANNABLE_EXTENSIONS
    allowed_domains: tuple[str, ...] = ()
    max_matches_per_rule: int = 5
    max_matches_per_threat: int = 50
    threat_descriptions: dict[ThreatType, str] = field(default_factory=dict)
    source: str | None = None

    def is_scannable(self, file_path: str) -> bool:
        lowered = file_path.lower()
        return any(lowered.endswith(ext) for ext in self.scannable_extensions)

    def describe(self, threat_type: ThreatType) -> str:
        if threat_type in self.threat_descriptions:
            return self.threat_descriptions[threat_type]
        return threat_type.value.replace("_", " ").capitalize() + " detected"

    def apply_manifest(self, manifest: dict[str, Any]) -> None:
        self.version = str(manifest.get("version", self.version))
        self.name = str(manifest.get("name", self.name))
        if "scannable_extensions" in manifest:
            self.scannable_extensions = tuple(e.lower() for e in manifest["scannable_extensions"])
        if "allowed_domains" in manifest:
            self.allowed_domains = tuple(d.lower() for d in manifest["allowed_domains"])
        self.max_matches_per_rule = int(manifest.get("max_matches_per_rule", self.max_matches_per_rule))
        self.max_matches_per_threat = int(manifest.get("max_matches_per_threat", self.max_matches_per_threat))
        for key, text in (manifest.get("threat_descriptions") or {}).items():
            self.threat_descriptions[ThreatType(key)] = str(text)


class RuleLoader:
    """Loads rule sets from YAML files."""

    def __init__(self, rules_file: Path | None = None):
        """
        Initialize rule loader.

        Args:
            rules_file: Path to a single YAML file **or** a rule-set directory
                containing ``ruleset.yaml`` and ``*.yaml`` rule lists.  If
                *None*, defaults to the core pack's ``signatures/`` directory.
        """
        if rules_file is None:
            from ...data import SIGNATURES_DIR

            rules_file = SIGNATURES_DIR

        self.rules_file = rules_file
        self.rules: list[SignatureRule] = []
        self.rules_by_id: dict[str, SignatureRule] = {}
        self.rules_by_threat_type: dict[ThreatType, list[SignatureRule]] = {}

    @staticmethod
    def _read_yaml(path: Path) -> Any:
        try:
            with open(path, encoding="utf-8") as f:
                return yaml.safe_load(f)
        except Exception as e:
            raise RuntimeError(f"Failed to load rules from {path}: {e}") from e

    def load_rule_set(self) -> RuleSet:
        """
        Load the rule set from a YAML file or a rule-set directory.

        Returns:
            RuleSet with compiled rules
        """
        rules_path = Path(self.rules_file)
        rule_set = RuleSet(version="unversioned", source=str(rules_path))
        rules_data: list[dict] = []

        if rules_path.is_dir():
            manifest_path = rules_path / MANIFEST_FILE
            if manifest_path.exists():
                manifest = self._read_yaml(manifest_path)
                if not isinstance(manifest, dict):
                    raise RuntimeError(f"Failed to load rules from {manifest_path}: expected a YAML mapping")
                rule_set.apply_manifest(manifest)

            yaml_files = sorted(p for p in rules_path.glob("*.yaml") if p.name != MANIFEST_FILE)
            if not yaml_files:
                raise RuntimeError(f"No .yaml rule files found in {rules_path}")

            for yaml_file in yaml_files:
                data = self._read_yaml(yaml_file)
                if not isinstance(data, list):
                    raise RuntimeError(f"Failed to load rules from {yaml_file}: expected a YAML list of rule objects")
                rules_data.extend(data)
        else:
            data = self._read_yaml(rules_path)
            if isinstance(data, dict):
                rule_set.apply_manifest(data)
                data = data.get("rules")
            if not isinstance(data, list):
                raise RuntimeError(f"Failed to load rules from {rules_path}: expected a YAML list of rule objects")
            rules_data = data

        self.rules = []
        self.rules_by_id = {}
        self.rules_by_threat_type = {}

        for rule_data in rules_data:
            try:
                rule = SignatureRule(rule_data)
            except Exception as e:
                logger.warning("Failed to load rule %s: %s", rule_data.get("id", "unknown"), e)
                continue
            if rule.id in self.rules_by_id:
                logger.warning("Duplicate rule id %s ignored", rule.id)
                continue
            self.rules.append(rule)
            self.rules_by_id[rule.id] = rule

            # Group by threat type
            self.rules_by_threat_type.setdefault(rule.threat_type, []).append(rule)

        rule_set.rules = list(self.rules)
        logger.debug("Loaded rule set %s v%s with %d rules", rule_set.name, rule_set.version, len(rule_set.rules))
        return rule_set

    def load_rules(self) -> list[SignatureRule]:
        """Load rules and return them as a flat list."""
        return self.load_rule_set().rules

    def get_rule(self, rule_id: str) -> SignatureRule | None:
        """Get a specific rule by ID."""
        return self.rules_by_id.get(rule_id)

    def get_rules_for_threat_type(self, threat_type: ThreatType) -> list[SignatureRule]:
        """Get all rules for a specific threat type."""
        return self.rules_by_threat_type.get(threat_type, [])
