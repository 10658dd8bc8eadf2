"""Entry point for `python -m kubemirror`.

Usage:
    python -m kubemirror
"""

from __future__ import annotations

from kubemirror.app import run

run()
