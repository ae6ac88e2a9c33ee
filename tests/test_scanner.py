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
Tests for the malicious-content scanner.
"""

import pytest
from conftest import asset_members, build_unitypackage, make_guid

from unitypackage_extractor.core.archive_reader import ArchiveReader
from unitypackage_extractor.core.assembler import AssetAssembler
from unitypackage_extractor.core.models import MaliciousThreat, ThreatSeverity, ThreatType
from unitypackage_extractor.core.scanner import (
    MaliciousContentScanner,
    decode_text,
    is_malicious_verdict,
    looks_like_text,
    scan_package,
)

WEBHOOK = "https://discord.com/api/webhooks/123456789012345678/" + "A" * 68
BASE64_BLOB = "QUJD" * 80


@pytest.fixture(scope="module")
def scanner():
    return MaliciousContentScanner()


def _threat(result, threat_type: ThreatType) -> MaliciousThreat:
    matching = result.get_threats_by_type(threat_type)
    assert len(matching) == 1, matching
    return matching[0]


class TestVerdict:
    """Test the malicious verdict rule."""

    def test_single_medium_is_not_malicious(self):
        threats = [MaliciousThreat(ThreatType.DISCORD_WEBHOOK, ThreatSeverity.MEDIUM, "webhook")]
        assert not is_malicious_verdict(threats)

    def test_two_medium_types_are_malicious(self):
        threats = [
            MaliciousThreat(ThreatType.DISCORD_WEBHOOK, ThreatSeverity.MEDIUM, "webhook"),
            MaliciousThreat(ThreatType.UNSAFE_LINKS, ThreatSeverity.MEDIUM, "links"),
        ]
        assert is_malicious_verdict(threats)

    def test_any_high_is_malicious(self):
        threats = [MaliciousThreat(ThreatType.SUSPICIOUS_CODE_PATTERNS, ThreatSeverity.HIGH, "code")]
        assert is_malicious_verdict(threats)

    def test_low_only_is_clean(self):
        threats = [MaliciousThreat(ThreatType.SUSPICIOUS_CODE_PATTERNS, ThreatSeverity.LOW, "code")]
        assert not is_malicious_verdict(threats)
        assert not is_malicious_verdict([])


class TestTextDetection:
    """Test the binary/text heuristic."""

    def test_source_is_text(self):
        assert looks_like_text(b"using UnityEngine;\r\n\tclass A {}\n")

    def test_nul_means_binary(self):
        assert not looks_like_text(b"MZ\x90\x00\x03\x00\x00\x00")

    def test_control_characters(self):
        assert not looks_like_text(bytes(range(1, 8)) * 10)

    def test_utf16_with_bom_is_text(self):
        data = "\ufeffclass A {}".encode("utf-16-le")
        assert looks_like_text(data)
        assert decode_text(data) == "class A {}"

    def test_utf8_bom_is_stripped(self):
        assert decode_text("\ufeffclass A {}".encode("utf-8")) == "class A {}"


class TestDetection:
    """Test detection over in-memory contents."""

    def test_webhook_alone(self, scanner):
        result = scanner.scan_contents("p", [("Assets/Hook.cs", f'const string Url = "{WEBHOOK}";'.encode())])

        assert [t.threat_type for t in result.threats] == [ThreatType.DISCORD_WEBHOOK]
        assert result.threats[0].severity == ThreatSeverity.MEDIUM
        assert result.threats[0].matches[0].rule_id == "DISCORD_WEBHOOK_URL"
        assert result.threats[0].matches[0].line_number == 1
        assert not result.is_malicious

    def test_webhook_and_shortener(self, scanner):
        source = f'var a = "{WEBHOOK}";\nvar b = "https://bit.ly/3xYz";\n'
        result = scanner.scan_contents("p", [("Assets/Hook.cs", source)])

        assert _threat(result, ThreatType.DISCORD_WEBHOOK).severity == ThreatSeverity.MEDIUM
        link = _threat(result, ThreatType.UNSAFE_LINKS)
        assert link.severity == ThreatSeverity.MEDIUM
        assert link.matches[0].line_number == 2
        assert result.is_malicious

    def test_same_medium_type_twice_is_not_malicious(self, scanner):
        source = 'var a = "https://bit.ly/x";\nvar b = "https://grabify.link/y";\n'
        result = scanner.scan_contents("p", [("Assets/Links.cs", source)])

        link = _threat(result, ThreatType.UNSAFE_LINKS)
        assert {m.rule_id for m in link.matches} == {"UNSAFE_LINK_SHORTENER", "UNSAFE_LINK_DENYLIST"}
        assert not result.is_malicious

    def test_base64_decode_then_execute(self, scanner):
        source = (
            f'string payload = "{BASE64_BLOB}";\n'
            "var bytes = Convert.FromBase64String(payload);\n"
            "File.WriteAllBytes(path, bytes);\n"
            "Process.Start(path);\n"
        )
        result = scanner.scan_contents("p", [("Assets/Loader.cs", source)])

        code = _threat(result, ThreatType.SUSPICIOUS_CODE_PATTERNS)
        assert code.severity == ThreatSeverity.HIGH
        assert {"BASE64_BLOB_DECODE_EXECUTE", "PROCESS_LAUNCH"} <= {m.rule_id for m in code.matches}
        assert result.is_malicious

    def test_sequence_outside_window_is_ignored(self, scanner):
        source = "var b = Convert.FromBase64String(s);\n" + "// filler\n" * 100 + "Assembly.Load(b);\n"
        result = scanner.scan_contents("p", [("Assets/Loader.cs", source)])

        assert result.threats == []

    def test_sequence_inside_window(self, scanner):
        source = "var b = Convert.FromBase64String(s);\nvar asm = Assembly.Load(b);\n"
        result = scanner.scan_contents("p", [("Assets/Loader.cs", source)])

        code = _threat(result, ThreatType.SUSPICIOUS_CODE_PATTERNS)
        assert code.severity == ThreatSeverity.HIGH
        assert [m.rule_id for m in code.matches] == ["BASE64_DECODE_EXECUTE"]
        assert code.matches[0].line_number == 1

    def test_links_escalate_next_to_execution(self, scanner):
        result = scanner.scan_contents("p", [("Assets/Run.cs", 'Process.Start("https://bit.ly/payload");')])

        link = _threat(result, ThreatType.UNSAFE_LINKS)
        assert link.severity == ThreatSeverity.HIGH
        assert result.is_malicious

    def test_escalation_is_per_file(self, scanner):
        result = scanner.scan_contents(
            "p",
            [
                ("Assets/Run.cs", 'Process.Start("notepad.exe");'),
                ("Assets/Links.cs", 'var u = "https://bit.ly/payload";'),
            ],
        )

        assert _threat(result, ThreatType.UNSAFE_LINKS).severity == ThreatSeverity.MEDIUM
        assert result.threats[0].severity == ThreatSeverity.HIGH

    def test_commented_out_call_is_ignored(self, scanner):
        result = scanner.scan_contents("p", [("Assets/A.cs", '    // Process.Start("notepad.exe");')])
        assert result.threats == []

    def test_allowed_domains_are_ignored(self, scanner):
        source = 'var a = "https://docs.unity3d.com/Manual";\nvar b = "https://github.com/user/repo";'
        result = scanner.scan_contents("p", [("Assets/A.cs", source)])
        assert result.threats == []

    def test_ip_literal_links(self, scanner):
        source = 'var a = "http://127.0.0.1:8080/";\nvar b = "http://203.0.113.7/drop";'
        result = scanner.scan_contents("p", [("Assets/A.cs", source)])

        link = _threat(result, ThreatType.UNSAFE_LINKS)
        assert [m.rule_id for m in link.matches] == ["UNSAFE_LINK_IP_LITERAL"]
        assert link.matches[0].line_number == 2

    def test_paste_sites_are_flagged(self, scanner):
        source = 'var a = "https://pastebin.com/raw/Xy12Ab";\nvar b = "https://hastebin.com/raw/abc";'
        result = scanner.scan_contents("p", [("Assets/A.cs", source)])

        link = _threat(result, ThreatType.UNSAFE_LINKS)
        assert [m.rule_id for m in link.matches] == ["UNSAFE_LINK_DENYLIST", "UNSAFE_LINK_DENYLIST"]
        assert "pastebin.com" not in scanner.rule_set.allowed_domains

    def test_snippets_are_bounded(self, scanner):
        source = f'var p = "{BASE64_BLOB}"; var b = Convert.FromBase64String(p); Assembly.Load(b);'
        result = scanner.scan_contents("p", [("Assets/A.cs", source)])

        for threat in result.threats:
            for match in threat.matches:
                assert len(match.snippet) <= 203
        snippets = [m.snippet for m in _threat(result, ThreatType.SUSPICIOUS_CODE_PATTERNS).matches]
        assert any(s.endswith("...") for s in snippets)

    def test_match_caps(self, scanner):
        source = "\n".join(f'Process.Start("tool{i}.exe");' for i in range(20))
        result = scanner.scan_contents("p", [(f"Assets/Tool{n}.cs", source) for n in range(15)])

        code = _threat(result, ThreatType.SUSPICIOUS_CODE_PATTERNS)
        assert len(code.matches) == scanner.rule_set.max_matches_per_threat == 50
        assert sum(1 for m in code.matches if m.file_path == "Assets/Tool0.cs") == 5

    def test_threats_ordered_by_severity(self, scanner):
        source = f'var u = "{WEBHOOK}";\nFile.Delete(path);\nRegistry.SetValue(k, n, v);\n'
        result = scanner.scan_contents("p", [("Assets/A.cs", source)])

        severities = [t.severity.rank for t in result.threats]
        assert severities == sorted(severities, reverse=True)
        assert result.max_severity == ThreatSeverity.HIGH


class TestFileSelection:
    """Test which files are screened."""

    def test_non_scannable_extension(self, scanner):
        result = scanner.scan_contents("p", [("Assets/readme.txt", WEBHOOK.encode())])
        assert result.files_scanned == 0
        assert result.files_skipped == 1
        assert result.threats == []

    def test_binary_content_is_skipped(self, scanner):
        result = scanner.scan_contents("p", [("Assets/Plugin.cs", b"\x00\x01" + WEBHOOK.encode())])
        assert result.files_scanned == 0
        assert result.files_skipped == 1

    def test_dll_txt_and_js(self, scanner):
        result = scanner.scan_contents(
            "p", [("Assets/Lib.dll.txt", WEBHOOK.encode()), ("Assets/Script.JS", WEBHOOK.encode())]
        )
        assert result.files_scanned == 2
        assert len(_threat(result, ThreatType.DISCORD_WEBHOOK).matches) == 2

    def test_utf16_source(self, scanner):
        data = ("\ufeff" + f'var u = "{WEBHOOK}";').encode("utf-16-le")
        result = scanner.scan_contents("p", [("Assets/Wide.cs", data)])
        assert _threat(result, ThreatType.DISCORD_WEBHOOK)

    def test_scan_files_on_disk(self, scanner, tmp_path):
        script = tmp_path / "Hook.cs"
        script.write_text(f'var u = "{WEBHOOK}";', encoding="utf-8")
        result = scanner.scan_files(
            "p", [("Assets/Hook.cs", script), ("Assets/Missing.cs", tmp_path / "missing.cs")]
        )

        assert result.files_scanned == 1
        assert result.files_skipped == 1
        assert _threat(result, ThreatType.DISCORD_WEBHOOK).matches[0].file_path == "Assets/Hook.cs"


class TestPackageScan:
    """Test scanning straight from a package."""

    def test_scan_package(self, make_package):
        package = make_package(
            {
                "Assets/Scripts/Hook.cs": f'var u = "{WEBHOOK}";'.encode(),
                "Assets/Scripts/Links.cs": b'var u = "https://tinyurl.com/abc";',
                "Assets/Textures/Hero.png": b"\x89PNG\x00",
            }
        )
        result = scan_package(package)

        assert result.package_path == str(package)
        assert result.rule_set_version == "2026.10.2"
        assert result.files_scanned == 2
        assert result.files_skipped == 1
        assert result.is_malicious
        assert not result.scan_skipped

    def test_clean_package(self, make_package):
        result = scan_package(make_package({"Assets/Scripts/Player.cs": b"public class Player : MonoBehaviour {}"}))
        assert result.threats == []
        assert not result.is_malicious

    def test_corrupt_package_is_skipped(self, tmp_path):
        package = tmp_path / "bad.unitypackage"
        package.write_bytes(b"\x1f\x8b\x07\x00" + b"\x00" * 1024)
        result = scan_package(package)

        assert result.scan_skipped
        assert result.skip_reason
        assert not result.is_malicious

    def test_scan_never_writes_assets(self, tmp_path):
        members = asset_members(make_guid(1), "Assets/A.cs", b'Process.Start("x");')
        package = build_unitypackage(tmp_path / "p.unitypackage", members)
        before = sorted(tmp_path.rglob("*"))
        result = scan_package(package)

        assert result.is_malicious
        assert sorted(tmp_path.rglob("*")) == before

    def test_missing_package(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            scan_package(tmp_path / "nope.unitypackage")

    def test_to_dict(self, make_package):
        data = scan_package(make_package({"Assets/A.cs": f'"{WEBHOOK}"'.encode()})).to_dict()

        assert data["is_malicious"] is False
        assert data["rule_set_version"] == "2026.10.2"
        assert data["threats"][0]["threat_type"] == "discord_webhook"


class TestOversizeContent:
    """Test that content over the size ceiling is skipped, not screened."""

    LIMIT = 1024

    @pytest.fixture
    def small_scanner(self, scanner):
        return MaliciousContentScanner(rule_set=scanner.rule_set, max_content_bytes=self.LIMIT)

    def _oversized_source(self) -> bytes:
        head = b'Process.Start("payload.exe");\n'
        return head + b"// padding\n" * 700

    def test_scan_contents_skips_oversized(self, small_scanner):
        data = self._oversized_source()
        result = small_scanner.scan_contents("p", [("Assets/Big.cs", data), ("Assets/Big2.cs", data.decode())])

        assert result.files_scanned == 0
        assert result.files_skipped == 2
        assert result.files_skipped_oversize == 2
        assert result.threats == []
        assert not result.is_malicious

    def test_content_at_the_limit_is_scanned(self, small_scanner):
        head = b'Process.Start("payload.exe");\n'
        data = head + b"/" * (self.LIMIT - len(head))
        result = small_scanner.scan_contents("p", [("Assets/Edge.cs", data)])

        assert result.files_scanned == 1
        assert result.files_skipped_oversize == 0
        assert result.is_malicious

    def test_scan_files_skips_oversized(self, small_scanner, tmp_path):
        big = tmp_path / "Big.cs"
        big.write_bytes(self._oversized_source())
        result = small_scanner.scan_files("p", [("Assets/Big.cs", big)])

        assert result.files_scanned == 0
        assert result.files_skipped_oversize == 1
        assert not result.is_malicious

    def test_scan_package_skips_oversized(self, small_scanner, make_package):
        package = make_package(
            {
                "Assets/Scripts/Big.cs": self._oversized_source(),
                "Assets/Scripts/Hook.cs": f'var u = "{WEBHOOK}";'.encode(),
            }
        )
        result = small_scanner.scan_package(package)

        assert result.files_scanned == 1
        assert result.files_skipped == 1
        assert result.files_skipped_oversize == 1
        assert result.to_dict()["files_skipped_oversize"] == 1
        assert result.get_threats_by_type(ThreatType.SUSPICIOUS_CODE_PATTERNS) == []
        assert not result.is_malicious

    def test_scan_assets_skips_oversized(self, small_scanner, tmp_path):
        package = build_unitypackage(
            tmp_path / "p.unitypackage", asset_members(make_guid(1), "Assets/Big.cs", self._oversized_source())
        )
        assembler = AssetAssembler(64 * 1024, spool_directory=tmp_path)
        assets = list(assembler.assemble(ArchiveReader(package).entries()))
        try:
            result = small_scanner.scan_assets(str(package), assets)
        finally:
            for asset in assets:
                asset.close()

        assert result.files_skipped_oversize == 1
        assert not result.is_malicious


class TestAssetScan:
    """Test scanning assembled assets held in memory."""

    def test_scan_assets_borrows_assets(self, scanner, tmp_path):
        hook = f'var u = "{WEBHOOK}";\nProcess.Start("x");\n'.encode()
        members = asset_members(make_guid(1), "Assets/Scripts/Hook.cs", hook) + asset_members(
            make_guid(2), "Assets/Textures/Hero.png", b"\x89PNG\x00"
        )
        package = build_unitypackage(tmp_path / "p.unitypackage", members)
        assembler = AssetAssembler(64 * 1024, spool_directory=tmp_path)
        assets = list(assembler.assemble(ArchiveReader(package).entries()))
        try:
            result = scanner.scan_assets(str(package), assets)

            assert result.is_malicious
            assert result.files_scanned == 1
            assert result.files_skipped == 1
            assert _threat(result, ThreatType.DISCORD_WEBHOOK).matches[0].file_path == "Assets/Scripts/Hook.cs"
            assert result.max_severity == ThreatSeverity.HIGH
            # still readable after the scan
            assert assets[0].asset.read_bytes() == hook
            assert assets[1].asset.read_bytes() == b"\x89PNG\x00"
        finally:
            for asset in assets:
                asset.close()
