"""
Invariant checks for release descriptors.

A well-formed descriptor has pairwise exclusive platform predicates that
together cover the supported platform matrix, and every rule carries a
well-formed sha256 checksum.
"""

import logging
from dataclasses import dataclass
from typing import Iterable, List, Sequence

from formulary_py.checksum import normalize_digest
from formulary_py.descriptor import PlatformPredicate, ReleaseDescriptor

logger = logging.getLogger("formulary.validate")

ERROR = "error"
WARNING = "warning"

DEFAULT_MATRIX_KEYS = ("macos/arm", "macos/intel", "linux/intel", "linux/arm64")
DEFAULT_MATRIX: Sequence[PlatformPredicate] = tuple(
    PlatformPredicate.from_key(key) for key in DEFAULT_MATRIX_KEYS
)


@dataclass(frozen=True)
class Problem:
    """A single finding from ``validate``."""

    severity: str
    message: str

    def __str__(self) -> str:
        return f"{self.severity}: {self.message}"


def validate(
    descriptor: ReleaseDescriptor,
    matrix: Iterable[PlatformPredicate] = DEFAULT_MATRIX,
) -> List[Problem]:
    """
    Check a descriptor against its invariants.

    Args:
        descriptor: The descriptor to check
        matrix: The officially supported platforms

    Returns:
        List of problems, errors first; empty when the descriptor is clean
    """
    matrix = list(matrix)
    problems: List[Problem] = []

    if not descriptor.name.strip():
        problems.append(Problem(ERROR, "name is empty"))
    if not descriptor.version.strip():
        problems.append(Problem(ERROR, "version is empty"))
    if not descriptor.rules:
        problems.append(Problem(ERROR, "descriptor has no platform rules"))

    rules = descriptor.rules
    for i, first in enumerate(rules):
        for second in rules[i + 1 :]:
            if first.predicate.overlaps(second.predicate):
                problems.append(
                    Problem(
                        ERROR,
                        f"rules {first.label} and {second.label} "
                        "match the same platform",
                    )
                )

    for supported in matrix:
        if not any(rule.predicate.includes(supported) for rule in rules):
            problems.append(Problem(ERROR, f"no rule covers {supported.label}"))

    for rule in rules:
        if not any(rule.predicate.overlaps(supported) for supported in matrix):
            problems.append(
                Problem(WARNING, f"rule {rule.label} is outside the platform matrix")
            )

    seen_urls = set()
    for rule in rules:
        try:
            normalize_digest(rule.sha256)
        except ValueError:
            problems.append(
                Problem(ERROR, f"rule {rule.label} has a malformed sha256: {rule.sha256!r}")
            )
        if rule.url in seen_urls:
            problems.append(Problem(ERROR, f"duplicate artifact URL {rule.url}"))
        seen_urls.add(rule.url)
        if not rule.url.startswith("https://"):
            problems.append(Problem(WARNING, f"rule {rule.label} URL is not https"))
        if descriptor.version and descriptor.version not in rule.url:
            problems.append(
                Problem(
                    WARNING,
                    f"rule {rule.label} URL does not mention version "
                    f"{descriptor.version}",
                )
            )
        if not rule.binary:
            problems.append(Problem(ERROR, f"rule {rule.label} has no binary name"))
        elif "/" in rule.binary:
            problems.append(
                Problem(
                    ERROR,
                    f"rule {rule.label} binary {rule.binary!r} is not a plain file name",
                )
            )

    problems.sort(key=lambda p: p.severity != ERROR)
    logger.debug(f"Validated {descriptor.name} {descriptor.version}: {len(problems)} problems")
    return problems


def is_valid(problems: Iterable[Problem], strict: bool = False) -> bool:
    """Return True when *problems* holds no errors (and no warnings if *strict*)."""
    for problem in problems:
        if problem.severity == ERROR or strict:
            return False
    return True
