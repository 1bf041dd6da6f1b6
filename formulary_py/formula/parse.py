"""
Homebrew formula parser for Formulary.

Reads the subset of the formula DSL that binary-release formulae use:
metadata statements, ``on_macos``/``on_linux``/``on_arm``/``on_intel``
blocks, ``if``/``elsif``/``else`` on ``OS`` and ``Hardware::CPU`` predicates,
``url``/``sha256`` pairs and ``bin.install``. Anything else that opens a
block (``test do``, ``resource ... do``, ``def caveats``) is skipped whole.
"""

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Union

from formulary_py.checksum import normalize_digest
from formulary_py.descriptor import (
    DescriptorError,
    IS_64_BIT_CONDITION,
    PlatformPredicate,
    PlatformRule,
    ReleaseDescriptor,
)
from formulary_py.platform import ARM, INTEL, LINUX, MACOS

logger = logging.getLogger(__name__)

_CLASS_RE = re.compile(r"^class\s+([A-Z]\w*)\s*<\s*Formula\b")
_STRING_STMT_RE = re.compile(r'^(desc|homepage|version|url|sha256)\s+"((?:[^"\\]|\\.)*)"')
_BIN_INSTALL_RE = re.compile(r'^bin\.install\s+"((?:[^"\\]|\\.)*)"')
_ON_BLOCK_RE = re.compile(r"^on_(macos|linux|arm|intel)\s+do$")
_IF_RE = re.compile(r"^(if|elsif)\s+(.+)$")
_VERSION_IN_URL_RE = re.compile(r"/download/v?([^/]+)/")
_BLOCK_OPENER_RE = re.compile(
    r"(^(if|unless|case|while|until|begin|def|class|module)\b)|(\bdo(\s*\|[^|]*\|)?$)"
)

_TERMS: Dict[str, Dict[str, object]] = {
    "OS.mac?": {"os": MACOS},
    "OS.linux?": {"os": LINUX},
    "Hardware::CPU.arm?": {"cpu": ARM},
    "Hardware::CPU.intel?": {"cpu": INTEL},
    IS_64_BIT_CONDITION: {"req64": True},
}
_ON_BLOCKS = {
    "macos": {"os": MACOS},
    "linux": {"os": LINUX},
    "arm": {"cpu": ARM},
    "intel": {"cpu": INTEL},
}
_URL_ARCH_HINTS = (
    ("arm64", ARM),
    ("aarch64", ARM),
    ("x86_64", INTEL),
    ("amd64", INTEL),
)
_URL_OS_HINTS = (
    ("darwin", MACOS),
    ("macos", MACOS),
    ("apple", MACOS),
    ("linux", LINUX),
)


class FormulaParseError(DescriptorError):
    """Raised when a formula cannot be read as a release descriptor."""

    def __init__(self, message: str, line: Optional[int] = None):
        self.line = line
        prefix = f"line {line}: " if line is not None else ""
        super().__init__(f"{prefix}{message}")


@dataclass
class _Frame:
    kind: str  # "class", "cond", "def", "skip"
    line: int
    os: Optional[str] = None
    cpu: Optional[str] = None
    req64: bool = False
    url: Optional[str] = None
    sha256: Optional[str] = None
    binary: Optional[str] = None
    url_line: Optional[int] = None
    terms: List[str] = field(default_factory=list)


def _unescape(value: str) -> str:
    return re.sub(r"\\(.)", r"\1", value)


def _strip_comment(line: str) -> str:
    """Drop a trailing ``# ...`` comment that is not inside a string literal."""
    quote: Optional[str] = None
    escaped = False
    for i, char in enumerate(line):
        if escaped:
            escaped = False
        elif quote is not None:
            if char == "\\":
                escaped = True
            elif char == quote:
                quote = None
        elif char in "\"'":
            quote = char
        elif char == "#":
            return line[:i]
    return line


def _name_from_class(class_name: str) -> str:
    """``LinkPatrol`` -> ``link-patrol``; ``FooAT2`` -> ``foo@2``."""
    name = re.sub(r"(?<=[a-z0-9])AT(?=\d)", "@", class_name)
    return re.sub(r"(?<=[a-z0-9])([A-Z])", r"-\1", name).lower()


def _condition_frame(condition: str, line: int) -> _Frame:
    frame = _Frame(kind="cond", line=line)
    for term in (part.strip() for part in condition.split("&&")):
        known = _TERMS.get(term)
        if known is None:
            raise FormulaParseError(f"unsupported condition: {term}", line)
        frame.terms.append(term)
        for key, value in known.items():
            setattr(frame, key, value)
    return frame


def _else_frame(previous: _Frame, line: int) -> _Frame:
    """Build the complement of a single-term condition for an ``else`` branch."""
    if previous.kind == "cond" and len(previous.terms) == 1:
        term = previous.terms[0]
        flipped = {
            "OS.mac?": {"os": LINUX},
            "OS.linux?": {"os": MACOS},
            "Hardware::CPU.arm?": {"cpu": INTEL},
            "Hardware::CPU.intel?": {"cpu": ARM},
        }.get(term)
        if flipped is not None:
            frame = _Frame(kind="cond", line=line)
            for key, value in flipped.items():
                setattr(frame, key, value)
            return frame
    raise FormulaParseError("cannot interpret else branch", line)


class _FormulaParser:
    def __init__(self, name: Optional[str]):
        self.name = name
        self.class_name: Optional[str] = None
        self.meta: Dict[str, str] = {}
        self.stack: List[_Frame] = []
        self.rules: List[Dict[str, object]] = []
        self.default_binary: Optional[str] = None

    def _innermost(self, *kinds: str) -> Optional[_Frame]:
        for frame in reversed(self.stack):
            if frame.kind in kinds:
                return frame
        return None

    def _resolve(self, attr: str) -> Optional[object]:
        for frame in reversed(self.stack):
            value = getattr(frame, attr)
            if value:
                return value
        return None

    def _close(self, frame: _Frame) -> None:
        """Turn a frame holding ``url``/``sha256`` into a pending rule."""
        if frame.url is None and frame.sha256 is None:
            return
        if frame.url is None:
            raise FormulaParseError("sha256 without url", frame.line)
        if frame.sha256 is None:
            raise FormulaParseError("url without sha256", frame.url_line)

        # Conditions are read from the frame and everything enclosing it.
        self.stack.append(frame)
        try:
            os_name = self._resolve("os")
            cpu = self._resolve("cpu")
            req64 = bool(self._resolve("req64"))
        finally:
            self.stack.pop()

        lowered = frame.url.lower()
        if os_name is None:
            os_name = next((o for hint, o in _URL_OS_HINTS if hint in lowered), None)
        if cpu is None:
            cpu = next((c for hint, c in _URL_ARCH_HINTS if hint in lowered), None)
        if os_name is None or cpu is None:
            raise FormulaParseError(
                f"cannot tell which platform {frame.url} is for", frame.url_line
            )

        self.rules.append(
            {
                "predicate": PlatformPredicate(os=os_name, cpu=cpu, require_64_bit=req64),
                "url": frame.url,
                "sha256": frame.sha256,
                "binary": frame.binary,
            }
        )

    def feed(self, lineno: int, raw: str) -> None:
        line = _strip_comment(raw).strip()
        if not line:
            return

        top = self.stack[-1] if self.stack else None

        if top is not None and top.kind == "skip":
            if line == "end":
                self.stack.pop()
            elif _BLOCK_OPENER_RE.search(line):
                self.stack.append(_Frame(kind="skip", line=lineno))
            return

        match = _CLASS_RE.match(line)
        if match:
            if self.class_name is not None:
                raise FormulaParseError("more than one formula class", lineno)
            self.class_name = match.group(1)
            self.stack.append(_Frame(kind="class", line=lineno))
            return

        if self.class_name is None:
            raise FormulaParseError(f"expected 'class ... < Formula', got {line!r}", lineno)

        if line == "end":
            if not self.stack:
                raise FormulaParseError("unbalanced 'end'", lineno)
            frame = self.stack.pop()
            if frame.kind == "cond":
                self._close(frame)
            elif frame.kind == "class" and frame.url is not None:
                self._close(frame)
            return

        match = _ON_BLOCK_RE.match(line)
        if match:
            frame = _Frame(kind="cond", line=lineno)
            for key, value in _ON_BLOCKS[match.group(1)].items():
                setattr(frame, key, value)
            self.stack.append(frame)
            return

        match = _IF_RE.match(line)
        if match:
            keyword, condition = match.groups()
            if keyword == "elsif":
                if top is None or top.kind != "cond":
                    raise FormulaParseError("'elsif' without 'if'", lineno)
                self._close(self.stack.pop())
            self.stack.append(_condition_frame(condition, lineno))
            return

        if line == "else":
            if top is None or top.kind != "cond":
                raise FormulaParseError("'else' without 'if'", lineno)
            previous = self.stack.pop()
            self._close(previous)
            self.stack.append(_else_frame(previous, lineno))
            return

        if line == "def install":
            self.stack.append(_Frame(kind="def", line=lineno))
            return

        match = _BIN_INSTALL_RE.match(line)
        if match:
            binary = _unescape(match.group(1))
            owner = self._innermost("cond", "class")
            if owner is None or owner.kind == "class":
                self.default_binary = binary
            else:
                owner.binary = binary
            return

        match = _STRING_STMT_RE.match(line)
        if match:
            keyword, value = match.group(1), _unescape(match.group(2))
            owner = self._innermost("cond", "class")
            if keyword in ("url", "sha256"):
                if owner is None:
                    raise FormulaParseError(f"{keyword} outside formula", lineno)
                if getattr(owner, keyword) is not None:
                    raise FormulaParseError(f"duplicate {keyword}", lineno)
                if keyword == "sha256":
                    try:
                        value = normalize_digest(value)
                    except ValueError as e:
                        raise FormulaParseError(str(e), lineno) from None
                setattr(owner, keyword, value)
                if keyword == "url":
                    owner.url_line = lineno
            elif owner is not None and owner.kind == "class":
                self.meta[keyword] = value
            else:
                logger.debug(f"Ignoring nested {keyword} on line {lineno}")
            return

        if _BLOCK_OPENER_RE.search(line):
            self.stack.append(_Frame(kind="skip", line=lineno))
            return

        logger.debug(f"Ignoring formula statement on line {lineno}: {line}")

    def finish(self) -> ReleaseDescriptor:
        if self.class_name is None:
            raise FormulaParseError("no 'class ... < Formula' found")
        if self.stack:
            raise FormulaParseError("missing 'end'", self.stack[-1].line)
        if not self.rules:
            raise FormulaParseError("formula declares no url/sha256 artifacts")

        name = self.name or _name_from_class(self.class_name)
        version = self.meta.get("version")
        if not version:
            match = _VERSION_IN_URL_RE.search(str(self.rules[0]["url"]))
            if not match:
                raise FormulaParseError("formula has no version")
            version = match.group(1)
            logger.debug(f"Inferred version {version} from artifact URL")

        binary = self.default_binary or name
        rules = tuple(
            PlatformRule(
                predicate=rule["predicate"],  # type: ignore[arg-type]
                url=str(rule["url"]),
                sha256=str(rule["sha256"]),
                binary=str(rule["binary"] or binary),
            )
            for rule in self.rules
        )
        return ReleaseDescriptor(
            name=name,
            desc=self.meta.get("desc", ""),
            homepage=self.meta.get("homepage", ""),
            version=version,
            rules=rules,
        )


def parse_formula(text: str, name: Optional[str] = None) -> ReleaseDescriptor:
    """
    Parse a Homebrew formula into a ReleaseDescriptor.

    Args:
        text: Formula source
        name: Package name; derived from the class name when omitted

    Returns:
        The descriptor the formula encodes

    Raises:
        FormulaParseError: if the formula uses constructs outside the
            supported subset or is structurally broken
    """
    parser = _FormulaParser(name)
    for lineno, raw in enumerate(text.splitlines(), start=1):
        parser.feed(lineno, raw)
    descriptor = parser.finish()
    logger.debug(
        f"Parsed formula {descriptor.name} {descriptor.version} "
        f"with {len(descriptor.rules)} rules"
    )
    return descriptor


def parse_formula_file(path: Union[str, Path]) -> ReleaseDescriptor:
    """Read and parse a formula file; the file stem names the package."""
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise FormulaParseError(f"Failed to read {path}: {e}") from e
    return parse_formula(text, name=path.stem)
