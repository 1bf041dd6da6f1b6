"""Shared fixtures for the unit tests."""

from pathlib import Path

import pytest

from formulary_py.descriptor import ReleaseDescriptor

DATA_DIR = Path(__file__).resolve().parent.parent / "data"

LINK_PATROL_CHECKSUMS = {
    "link-patrol_Darwin_arm64.tar.gz": "9dc4e6e200404579383e7168681e2bb2d39ae6c4e909560aa2785d10e3c24739",
    "link-patrol_Darwin_x86_64.tar.gz": "0015eccf06ce1f29f8f6a61698fec646470778f83fab8b83aa041c2ba27aa9b9",
    "link-patrol_Linux_x86_64.tar.gz": "7e6f97fa89023a2a6efc4b38d584a45efc53e6cbf547435c123cae44346a40c6",
    "link-patrol_Linux_arm64.tar.gz": "52652f358cdee53e00eeec0e81afbcb0efd8a8a63a1dd987b9a8a6f731c1952d",
}

LINK_PATROL_YAML = """\
name: link-patrol
desc: Detect dead URLs in markdown files
homepage: https://github.com/rednafi/link-patrol
version: '0.4'
binary: link-patrol
rules:
- os: macos
  cpu: arm
  url: https://github.com/rednafi/link-patrol/releases/download/v0.4/link-patrol_Darwin_arm64.tar.gz
  sha256: 9dc4e6e200404579383e7168681e2bb2d39ae6c4e909560aa2785d10e3c24739
- os: macos
  cpu: intel
  url: https://github.com/rednafi/link-patrol/releases/download/v0.4/link-patrol_Darwin_x86_64.tar.gz
  sha256: 0015eccf06ce1f29f8f6a61698fec646470778f83fab8b83aa041c2ba27aa9b9
- os: linux
  cpu: intel
  url: https://github.com/rednafi/link-patrol/releases/download/v0.4/link-patrol_Linux_x86_64.tar.gz
  sha256: 7e6f97fa89023a2a6efc4b38d584a45efc53e6cbf547435c123cae44346a40c6
- os: linux
  cpu: arm
  require_64_bit: true
  url: https://github.com/rednafi/link-patrol/releases/download/v0.4/link-patrol_Linux_arm64.tar.gz
  sha256: 52652f358cdee53e00eeec0e81afbcb0efd8a8a63a1dd987b9a8a6f731c1952d
"""


@pytest.fixture
def formula_path() -> Path:
    """Path to the GoReleaser-generated link-patrol formula."""
    return DATA_DIR / "link-patrol.rb"


@pytest.fixture
def formula_text(formula_path: Path) -> str:
    return formula_path.read_text(encoding="utf-8")


@pytest.fixture
def descriptor() -> ReleaseDescriptor:
    """The link-patrol 0.4 release descriptor."""
    return ReleaseDescriptor.from_yaml(LINK_PATROL_YAML)


@pytest.fixture
def descriptor_file(tmp_path: Path) -> Path:
    path = tmp_path / "link-patrol.yaml"
    path.write_text(LINK_PATROL_YAML)
    return path


@pytest.fixture
def checksums_file(tmp_path: Path) -> Path:
    """A checksums.txt for link-patrol 0.5 with fresh digests."""
    lines = [
        f"{str(i) * 64}  {filename}"
        for i, filename in enumerate(sorted(LINK_PATROL_CHECKSUMS), start=1)
    ]
    path = tmp_path / "checksums.txt"
    path.write_text("\n".join(lines) + "\n")
    return path


@pytest.fixture
def link_patrol_checksums() -> dict:
    """Filename to sha256 for the link-patrol 0.4 release."""
    return dict(LINK_PATROL_CHECKSUMS)
