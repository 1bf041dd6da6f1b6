"""Tests for descriptor invariant checks."""

from formulary_py.descriptor import PlatformPredicate, PlatformRule, ReleaseDescriptor
from formulary_py.descriptor.validate import (
    DEFAULT_MATRIX,
    ERROR,
    WARNING,
    Problem,
    is_valid,
    validate,
)
from formulary_py.platform import ARM, INTEL, LINUX


def _messages(problems: list, severity: str) -> list:
    return [p.message for p in problems if p.severity == severity]


def _replace_rule(
    descriptor: ReleaseDescriptor, index: int, **changes: object
) -> ReleaseDescriptor:
    rules = list(descriptor.rules)
    old = rules[index]
    rules[index] = PlatformRule(
        predicate=changes.get("predicate", old.predicate),  # type: ignore[arg-type]
        url=str(changes.get("url", old.url)),
        sha256=str(changes.get("sha256", old.sha256)),
        binary=str(changes.get("binary", old.binary)),
    )
    return descriptor.superseded_by(descriptor.version, rules)


def test_clean_descriptor(descriptor: ReleaseDescriptor) -> None:
    problems = validate(descriptor)
    assert problems == []
    assert is_valid(problems, strict=True)


def test_default_matrix() -> None:
    assert [p.label for p in DEFAULT_MATRIX] == [
        "macos/arm",
        "macos/intel",
        "linux/intel",
        "linux/arm64",
    ]


def test_missing_platform_is_an_error(descriptor: ReleaseDescriptor) -> None:
    partial = descriptor.superseded_by(descriptor.version, descriptor.rules[:3])
    problems = validate(partial)
    assert _messages(problems, ERROR) == ["no rule covers linux/arm64"]
    assert not is_valid(problems)


def test_overlapping_rules(descriptor: ReleaseDescriptor) -> None:
    extra = PlatformRule(
        PlatformPredicate(LINUX, ARM),
        "https://github.com/rednafi/link-patrol/releases/download/v0.4/other.tar.gz",
        "c" * 64,
        "link-patrol",
    )
    problems = validate(
        descriptor.superseded_by(descriptor.version, descriptor.rules + (extra,))
    )
    assert "rules linux/arm64 and linux/arm match the same platform" in _messages(
        problems, ERROR
    )


def test_malformed_sha256(descriptor: ReleaseDescriptor) -> None:
    problems = validate(_replace_rule(descriptor, 0, sha256="deadbeef"))
    errors = _messages(problems, ERROR)
    assert len(errors) == 1
    assert errors[0].startswith("rule macos/arm has a malformed sha256")


def test_binary_must_be_plain_name(descriptor: ReleaseDescriptor) -> None:
    problems = validate(_replace_rule(descriptor, 0, binary="bin/link-patrol"))
    assert "rule macos/arm binary 'bin/link-patrol' is not a plain file name" in (
        _messages(problems, ERROR)
    )


def test_duplicate_url(descriptor: ReleaseDescriptor) -> None:
    dup = _replace_rule(descriptor, 1, url=descriptor.rules[0].url)
    assert any(m.startswith("duplicate artifact URL") for m in _messages(validate(dup), ERROR))


def test_warnings(descriptor: ReleaseDescriptor) -> None:
    changed = _replace_rule(
        descriptor,
        2,
        url="http://example.com/link-patrol_Linux_x86_64.tar.gz",
    )
    problems = validate(changed)
    warnings = _messages(problems, WARNING)
    assert "rule linux/intel URL is not https" in warnings
    assert "rule linux/intel URL does not mention version 0.4" in warnings
    assert is_valid(problems)
    assert not is_valid(problems, strict=True)


def test_rule_outside_matrix(descriptor: ReleaseDescriptor) -> None:
    matrix = [PlatformPredicate.from_key(k) for k in ("macos/arm", "macos/intel")]
    linux_only = [PlatformPredicate(LINUX, INTEL), PlatformPredicate(LINUX, ARM, True)]
    problems = validate(descriptor, matrix)
    warnings = _messages(problems, WARNING)
    assert len(warnings) == len(linux_only)
    assert "rule linux/intel is outside the platform matrix" in warnings


def test_errors_sort_first(descriptor: ReleaseDescriptor) -> None:
    broken = _replace_rule(descriptor, 0, url="http://x", sha256="nope")
    problems = validate(broken)
    severities = [p.severity for p in problems]
    assert severities == sorted(severities, key=lambda s: s != ERROR)
    assert severities[0] == ERROR


def test_empty_descriptor() -> None:
    problems = validate(ReleaseDescriptor(name="", desc="", homepage="", version=""))
    errors = _messages(problems, ERROR)
    assert "name is empty" in errors
    assert "version is empty" in errors
    assert "descriptor has no platform rules" in errors


def test_problem_str() -> None:
    assert str(Problem(WARNING, "careful")) == "warning: careful"
