"""Tests for the platform helpers module."""

from unittest.mock import patch

import pytest

from formulary_py.platform import (
    ARM,
    INTEL,
    LINUX,
    MACOS,
    Platform,
    detect_platform,
    is_linux,
    is_macos,
    normalize_arch,
    normalize_os,
    parse_platform,
)


class TestIsMacos:
    def test_true_on_darwin(self) -> None:
        with patch("formulary_py.platform.sys") as mock_sys:
            mock_sys.platform = "darwin"
            assert is_macos() is True

    def test_false_on_linux(self) -> None:
        with patch("formulary_py.platform.sys") as mock_sys:
            mock_sys.platform = "linux"
            assert is_macos() is False


class TestIsLinux:
    def test_true_on_linux(self) -> None:
        with patch("formulary_py.platform.sys") as mock_sys:
            mock_sys.platform = "linux"
            assert is_linux() is True

    def test_true_on_linux_variant(self) -> None:
        with patch("formulary_py.platform.sys") as mock_sys:
            mock_sys.platform = "linux2"
            assert is_linux() is True

    def test_false_on_darwin(self) -> None:
        with patch("formulary_py.platform.sys") as mock_sys:
            mock_sys.platform = "darwin"
            assert is_linux() is False


class TestNormalize:
    @pytest.mark.parametrize(
        "name, expected",
        [("Darwin", MACOS), ("osx", MACOS), ("linux", LINUX), ("linux2", LINUX)],
    )
    def test_os(self, name: str, expected: str) -> None:
        assert normalize_os(name) == expected

    def test_unknown_os(self) -> None:
        with pytest.raises(ValueError, match="Unsupported operating system"):
            normalize_os("windows")

    @pytest.mark.parametrize(
        "name, expected",
        [
            ("arm64", (ARM, 64)),
            ("aarch64", (ARM, 64)),
            ("armv7l", (ARM, 32)),
            ("x86_64", (INTEL, 64)),
            ("AMD64", (INTEL, 64)),
            ("i686", (INTEL, 32)),
        ],
    )
    def test_arch(self, name: str, expected: tuple) -> None:
        assert normalize_arch(name) == expected

    def test_unknown_arch(self) -> None:
        with pytest.raises(ValueError, match="Unsupported CPU architecture"):
            normalize_arch("riscv64")


class TestDetectPlatform:
    def test_apple_silicon(self) -> None:
        with patch("formulary_py.platform.sys") as mock_sys, patch(
            "formulary_py.platform._platform.machine", return_value="arm64"
        ):
            mock_sys.platform = "darwin"
            mock_sys.maxsize = 2**63 - 1
            assert detect_platform() == Platform(MACOS, ARM, 64)

    def test_32_bit_interpreter(self) -> None:
        with patch("formulary_py.platform.sys") as mock_sys, patch(
            "formulary_py.platform._platform.machine", return_value="aarch64"
        ):
            mock_sys.platform = "linux"
            mock_sys.maxsize = 2**31 - 1
            platform = detect_platform()
            assert platform == Platform(LINUX, ARM, 32)
            assert not platform.is_64_bit


class TestParsePlatform:
    def test_parse(self) -> None:
        assert parse_platform("linux/arm64") == Platform(LINUX, ARM, 64)
        assert parse_platform("Darwin/x86_64") == Platform(MACOS, INTEL, 64)

    def test_requires_slash(self) -> None:
        with pytest.raises(ValueError, match="os/arch"):
            parse_platform("linux")

    def test_str(self) -> None:
        assert str(Platform(LINUX, ARM, 32)) == "linux/arm (32-bit)"
