"""
Orchestrator Package - Runtime Wiring.

Builds the component graph and exposes the command-line
entry point. Holds no business logic.

Modules:
- bootstrap: build_core() / TradingCore
- cli: argparse commands and logging setup
"""

from .bootstrap import TradingCore, build_core


__all__ = [
    "TradingCore",
    "build_core",
]
