import logging
from pathlib import Path
from typing import List

from formulary_py.descriptor import PlatformRule, ReleaseDescriptor
from formulary_py.platform import LINUX, MACOS

logger = logging.getLogger(__name__)

DEFAULT_GENERATOR = "GoReleaser"

_OS_BLOCKS = ((MACOS, "on_macos"), (LINUX, "on_linux"))


def ruby_string(value: str) -> str:
    """Quote *value* as a double-quoted Ruby string literal."""
    escaped = value.replace("\\", "\\\\").replace('"', '\\"').replace("#{", "\\#{")
    return f'"{escaped}"'


def _render_rule(rule: PlatformRule) -> List[str]:
    return [
        f"    if {rule.predicate.condition()}",
        f"      url {ruby_string(rule.url)}",
        f"      sha256 {ruby_string(rule.sha256)}",
        "",
        "      def install",
        f"        bin.install {ruby_string(rule.binary)}",
        "      end",
        "    end",
    ]


def render_formula(
    descriptor: ReleaseDescriptor, generator: str = DEFAULT_GENERATOR
) -> str:
    """
    Renders a descriptor as a Homebrew formula.

    Args:
        descriptor: The release to render.
        generator: Tool name written into the "DO NOT EDIT" header.

    Returns:
        The formula source, ending with a newline.
    """
    lines = [
        "# typed: false",
        "# frozen_string_literal: true",
        "",
        f"# This file was generated by {generator}. DO NOT EDIT.",
        f"class {descriptor.class_name} < Formula",
        f"  desc {ruby_string(descriptor.desc)}",
        f"  homepage {ruby_string(descriptor.homepage)}",
        f"  version {ruby_string(descriptor.version)}",
    ]

    for os_name, block in _OS_BLOCKS:
        rules = [rule for rule in descriptor.rules if rule.predicate.os == os_name]
        if not rules:
            continue
        lines.append("")
        lines.append(f"  {block} do")
        for rule in rules:
            lines.extend(_render_rule(rule))
        lines.append("  end")

    lines.append("end")
    logger.debug(
        f"Rendered formula {descriptor.class_name} with {len(descriptor.rules)} rules"
    )
    return "\n".join(lines) + "\n"


def write_formula(
    descriptor: ReleaseDescriptor,
    output_path: Path,
    generator: str = DEFAULT_GENERATOR,
) -> Path:
    """Renders *descriptor* and writes it to *output_path*."""
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(render_formula(descriptor, generator), encoding="utf-8")
    logger.info(f"Wrote formula to {output_path}")
    return output_path
