# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""Tests for file hashing."""

import hashlib
from pathlib import Path

from deepseek_ocr.utils.hashing import compute_sha256, verify_checksum


class TestFileHashing:
    def test_matches_hashlib(self, tmp_path: Path) -> None:
        content = b"some file content for hashing" * 10000
        test_file = tmp_path / "test.bin"
        test_file.write_bytes(content)
        assert compute_sha256(test_file) == hashlib.sha256(content).hexdigest()

    def test_empty_file_has_known_hash(self, tmp_path: Path) -> None:
        test_file = tmp_path / "empty.bin"
        test_file.write_bytes(b"")
        expected = "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"
        assert compute_sha256(test_file) == expected


class TestVerifyChecksum:
    def test_correct_checksum_passes(self, tmp_path: Path) -> None:
        test_file = tmp_path / "verified.txt"
        test_file.write_bytes(b"verify me")
        assert verify_checksum(test_file, compute_sha256(test_file)) is True

    def test_uppercase_checksum_passes(self, tmp_path: Path) -> None:
        test_file = tmp_path / "verified.txt"
        test_file.write_bytes(b"verify me")
        assert verify_checksum(test_file, compute_sha256(test_file).upper()) is True

    def test_wrong_checksum_fails(self, tmp_path: Path) -> None:
        test_file = tmp_path / "tampered.txt"
        test_file.write_bytes(b"original")
        assert verify_checksum(test_file, "0" * 64) is False
