"""KubePolicy command-line interface.

Exposes:
    cli -- Click group entry point (registered as ``kubepolicy`` script).
"""

from kubepolicy.cli.main import cli

__all__ = ["cli"]
