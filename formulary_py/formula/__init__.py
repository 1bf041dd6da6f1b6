"""
Homebrew formula support for Formulary.

This package renders release descriptors as Homebrew formulae in the layout
release-automation tools such as GoReleaser emit, and parses such formulae
back into descriptors.
"""
