"""
Descriptor package for Formulary.

This module provides the release descriptor data model: a named, versioned
release whose platform rules map an (OS, CPU, bit width) predicate to the
artifact URL, its sha256 checksum, and the binary to install.

Descriptors are immutable. A new release produces a new descriptor that
supersedes the old one wholesale.
"""

import dataclasses
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

import yaml

from formulary_py.checksum import normalize_digest
from formulary_py.platform import ARM, INTEL, LINUX, MACOS, Platform, normalize_os

logger = logging.getLogger("formulary.descriptor")

CPU_FAMILIES = (ARM, INTEL)

_CPU_CONDITIONS = {
    ARM: "Hardware::CPU.arm?",
    INTEL: "Hardware::CPU.intel?",
}
IS_64_BIT_CONDITION = "Hardware::CPU.is_64_bit?"


class DescriptorError(ValueError):
    """Raised when a release descriptor is malformed."""


class UnsupportedPlatformError(DescriptorError):
    """Raised when no platform rule matches the requested platform."""

    def __init__(self, platform: Platform, available: Iterable[str]):
        self.platform = platform
        self.available = list(available)
        super().__init__(
            f"No release artifact for {platform}. "
            f"Supported: {', '.join(self.available) or 'none'}"
        )


@dataclass(frozen=True)
class PlatformPredicate:
    """A condition on operating system and CPU selecting one artifact."""

    os: str
    cpu: str
    require_64_bit: bool = False

    def __post_init__(self) -> None:
        if self.os not in (MACOS, LINUX):
            raise DescriptorError(f"Unknown operating system: {self.os!r}")
        if self.cpu not in CPU_FAMILIES:
            raise DescriptorError(f"Unknown CPU family: {self.cpu!r}")

    @classmethod
    def from_key(cls, key: str) -> "PlatformPredicate":
        """Parse a matrix key such as ``macos/arm`` or ``linux/arm64``."""
        if "/" not in key:
            raise DescriptorError(f"Platform key must look like 'os/cpu': {key!r}")
        os_part, cpu_part = key.strip().split("/", 1)
        require_64_bit = cpu_part.endswith("64")
        cpu = cpu_part[:-2] if require_64_bit else cpu_part
        try:
            os_name = normalize_os(os_part)
        except ValueError as e:
            raise DescriptorError(str(e)) from None
        return cls(os=os_name, cpu=cpu, require_64_bit=require_64_bit)

    @property
    def label(self) -> str:
        return f"{self.os}/{self.cpu}{'64' if self.require_64_bit else ''}"

    def matches(self, platform: Platform) -> bool:
        """Return True when *platform* satisfies this predicate."""
        if platform.os != self.os or platform.arch != self.cpu:
            return False
        return platform.is_64_bit or not self.require_64_bit

    def overlaps(self, other: "PlatformPredicate") -> bool:
        """Return True when some platform satisfies both predicates.

        A 64-bit machine satisfies both the plain and the 64-bit-only form of
        the same OS/CPU pair, so the bit-width flag never separates two rules.
        """
        return self.os == other.os and self.cpu == other.cpu

    def includes(self, other: "PlatformPredicate") -> bool:
        """Return True when every platform matching *other* also matches self."""
        if self.os != other.os or self.cpu != other.cpu:
            return False
        return other.require_64_bit or not self.require_64_bit

    def condition(self) -> str:
        """Return the Ruby ``Hardware::CPU`` condition for this predicate."""
        parts = [_CPU_CONDITIONS[self.cpu]]
        if self.require_64_bit:
            parts.append(IS_64_BIT_CONDITION)
        return " && ".join(parts)


@dataclass(frozen=True)
class PlatformRule:
    """Maps a platform predicate to an artifact, its checksum and binary name."""

    predicate: PlatformPredicate
    url: str
    sha256: str
    binary: str

    @property
    def label(self) -> str:
        return self.predicate.label

    def to_dict(self, include_binary: bool = True) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "os": self.predicate.os,
            "cpu": self.predicate.cpu,
        }
        if self.predicate.require_64_bit:
            data["require_64_bit"] = True
        data["url"] = self.url
        data["sha256"] = self.sha256
        if include_binary:
            data["binary"] = self.binary
        return data


def formula_class_name(name: str) -> str:
    """
    Derive the Ruby class name Homebrew expects for a formula name.

    ``link-patrol`` becomes ``LinkPatrol`` and ``foo@2`` becomes ``FooAT2``.
    """
    s = name[:1].upper() + name[1:].lower()
    s = re.sub(r"[-_.\s]([a-zA-Z0-9])", lambda m: m.group(1).upper(), s)
    s = s.replace("+", "x")
    return re.sub(r"(.)@(\d)", r"\1AT\2", s)


@dataclass(frozen=True)
class ReleaseDescriptor:
    """A single release of a package: metadata plus one rule per platform."""

    name: str
    desc: str
    homepage: str
    version: str
    rules: Tuple[PlatformRule, ...] = ()

    @property
    def class_name(self) -> str:
        return formula_class_name(self.name)

    @property
    def binary(self) -> Optional[str]:
        """The binary name shared by every rule, or None if rules disagree."""
        names = {rule.binary for rule in self.rules}
        if len(names) == 1:
            return names.pop()
        return None

    @property
    def labels(self) -> List[str]:
        return [rule.label for rule in self.rules]

    def select(self, platform: Platform) -> PlatformRule:
        """
        Select the rule for *platform*.

        Args:
            platform: The platform to install on

        Returns:
            The matching PlatformRule

        Raises:
            UnsupportedPlatformError: if no rule matches
            DescriptorError: if more than one rule matches
        """
        matching = [rule for rule in self.rules if rule.predicate.matches(platform)]
        if not matching:
            raise UnsupportedPlatformError(platform, self.labels)
        if len(matching) > 1:
            raise DescriptorError(
                f"Ambiguous rules for {platform}: "
                f"{', '.join(rule.label for rule in matching)}"
            )
        logger.debug(f"Selected {matching[0].label} for {platform}")
        return matching[0]

    def superseded_by(
        self, version: str, rules: Iterable[PlatformRule]
    ) -> "ReleaseDescriptor":
        """Return the descriptor of the next release; self is left untouched."""
        return dataclasses.replace(self, version=str(version), rules=tuple(rules))

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ReleaseDescriptor":
        """
        Create a ReleaseDescriptor from a dictionary.

        Rules may omit ``binary``; the top-level ``binary`` (or the package
        name) is used instead.

        Raises:
            DescriptorError: if required keys are missing or invalid
        """
        if not isinstance(data, dict):
            raise DescriptorError("Descriptor must be a mapping")

        missing = [key for key in ("name", "version", "rules") if not data.get(key)]
        if missing:
            raise DescriptorError(f"Descriptor is missing: {', '.join(missing)}")

        name = str(data["name"])
        version = data["version"]
        if isinstance(version, bool) or not isinstance(version, (str, int)):
            raise DescriptorError(
                f"version must be a string, got {version!r}; quote the version"
            )
        default_binary = str(data.get("binary") or name)

        rules: List[PlatformRule] = []
        for index, entry in enumerate(data["rules"]):
            if not isinstance(entry, dict):
                raise DescriptorError(f"Rule {index} must be a mapping")
            for key in ("os", "cpu", "url", "sha256"):
                if not entry.get(key):
                    raise DescriptorError(f"Rule {index} is missing {key!r}")
            try:
                os_name = normalize_os(str(entry["os"]))
            except ValueError as e:
                raise DescriptorError(f"Rule {index}: {e}") from None
            require_64_bit = entry.get("require_64_bit", False)
            if not isinstance(require_64_bit, bool):
                raise DescriptorError(
                    f"Rule {index}: require_64_bit must be true or false, "
                    f"got {require_64_bit!r}"
                )
            try:
                sha256 = normalize_digest(str(entry["sha256"]))
            except ValueError as e:
                raise DescriptorError(f"Rule {index}: {e}") from None
            predicate = PlatformPredicate(
                os=os_name,
                cpu=str(entry["cpu"]).lower(),
                require_64_bit=require_64_bit,
            )
            rules.append(
                PlatformRule(
                    predicate=predicate,
                    url=str(entry["url"]).strip(),
                    sha256=sha256,
                    binary=str(entry.get("binary") or default_binary),
                )
            )

        return cls(
            name=name,
            desc=str(data.get("desc", "")),
            homepage=str(data.get("homepage", "")),
            version=str(version),
            rules=tuple(rules),
        )

    @classmethod
    def from_yaml(cls, yaml_str: str) -> "ReleaseDescriptor":
        """Create a ReleaseDescriptor from a YAML string."""
        try:
            data = yaml.safe_load(yaml_str)
        except yaml.YAMLError as e:
            raise DescriptorError(f"Failed to parse YAML: {e}") from e
        return cls.from_dict(data)

    @classmethod
    def from_file(cls, file_path: Union[str, Path]) -> "ReleaseDescriptor":
        """Create a ReleaseDescriptor from a YAML file."""
        try:
            with open(file_path, "r") as f:
                return cls.from_yaml(f.read())
        except IOError as e:
            raise DescriptorError(f"Failed to read {file_path}: {e}") from e

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert the descriptor to a dictionary.

        Returns:
            Dictionary representation, with ``binary`` hoisted to the top
            level when every rule shares it
        """
        shared = self.binary
        data: Dict[str, Any] = {
            "name": self.name,
            "desc": self.desc,
            "homepage": self.homepage,
            "version": self.version,
        }
        if shared is not None:
            data["binary"] = shared
        data["rules"] = [
            rule.to_dict(include_binary=shared is None) for rule in self.rules
        ]
        return data

    def to_yaml(self) -> str:
        """Convert the descriptor to a YAML string."""
        return yaml.safe_dump(self.to_dict(), default_flow_style=False, sort_keys=False)
