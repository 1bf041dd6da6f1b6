"""
Platform detection helpers for Formulary.

Centralizes macOS vs Linux and ARM vs Intel differences so the rest of the
codebase can match release rules against a simple ``Platform`` value instead
of scattering ``sys.platform`` and ``platform.machine()`` checks.
"""

import platform as _platform
import sys
from dataclasses import dataclass
from typing import Tuple

MACOS = "macos"
LINUX = "linux"
ARM = "arm"
INTEL = "intel"

_OS_ALIASES = {
    "darwin": MACOS,
    "macos": MACOS,
    "mac": MACOS,
    "osx": MACOS,
    "linux": LINUX,
}

# machine name -> (cpu family, bit width)
_ARCH_ALIASES = {
    "arm64": (ARM, 64),
    "aarch64": (ARM, 64),
    "armv8": (ARM, 64),
    "armv8l": (ARM, 64),
    "armv7": (ARM, 32),
    "armv7l": (ARM, 32),
    "armv6": (ARM, 32),
    "armv6l": (ARM, 32),
    "arm": (ARM, 32),
    "x86_64": (INTEL, 64),
    "amd64": (INTEL, 64),
    "x64": (INTEL, 64),
    "intel": (INTEL, 64),
    "i386": (INTEL, 32),
    "i686": (INTEL, 32),
    "x86": (INTEL, 32),
}


@dataclass(frozen=True)
class Platform:
    """An operating system / CPU family / bit width triple."""

    os: str
    arch: str
    bits: int = 64

    @property
    def is_64_bit(self) -> bool:
        return self.bits == 64

    def __str__(self) -> str:
        return f"{self.os}/{self.arch} ({self.bits}-bit)"


def is_macos() -> bool:
    """Return True when running on macOS."""
    return sys.platform == "darwin"


def is_linux() -> bool:
    """Return True when running on Linux."""
    return sys.platform.startswith("linux")


def normalize_os(name: str) -> str:
    """Map an OS name (``Darwin``, ``osx``, ``linux2``...) to ``macos`` or ``linux``."""
    key = name.strip().lower()
    if key.startswith("linux"):
        return LINUX
    try:
        return _OS_ALIASES[key]
    except KeyError:
        raise ValueError(f"Unsupported operating system: {name!r}") from None


def normalize_arch(name: str) -> Tuple[str, int]:
    """Map a machine name to a ``(cpu, bits)`` pair, e.g. ``aarch64 -> (arm, 64)``."""
    key = name.strip().lower()
    try:
        return _ARCH_ALIASES[key]
    except KeyError:
        raise ValueError(f"Unsupported CPU architecture: {name!r}") from None


def detect_platform() -> Platform:
    """Return the ``Platform`` of the running interpreter."""
    os_name = normalize_os(sys.platform)
    cpu, bits = normalize_arch(_platform.machine())
    # A 32-bit interpreter on a 64-bit kernel can only run 32-bit binaries.
    if sys.maxsize <= 2**32:
        bits = 32
    return Platform(os=os_name, arch=cpu, bits=bits)


def parse_platform(value: str) -> Platform:
    """Parse an ``os/arch`` string such as ``linux/arm64`` or ``Darwin/x86_64``."""
    if "/" not in value:
        raise ValueError(f"Platform must look like 'os/arch', got {value!r}")
    os_part, arch_part = value.split("/", 1)
    cpu, bits = normalize_arch(arch_part)
    return Platform(os=normalize_os(os_part), arch=cpu, bits=bits)
