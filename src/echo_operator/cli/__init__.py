"""
CLI layer for echo-operator.

Entry point::

    echo-operator --help
"""

from echo_operator.cli.app import app

__all__ = ["app"]
