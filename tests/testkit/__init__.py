"""
Zemu Testing Framework Tests
============================

Tests of the engines, sequences, Session and pytest plugin in
src/zemu/testkit/. Every emulator collaborator is faked (see
tests/conftest.py); none of these tests need docker.

Copyright (c) 2025-2026 Hugo José Pinto & Contributors
"""
