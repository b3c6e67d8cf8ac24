"""
Zemu Command-Line Interface
===========================

- **zemuctl**: emulator housekeeping (stop stale emulators, pull the
  image, compare snapshot directories, decode status words)

Implemented as a Click application with uniform error reporting
(see zemu.cli.errors).

Copyright (c) 2025-2026 Hugo José Pinto & Contributors
"""

__all__ = ["zemuctl"]
