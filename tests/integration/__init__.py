"""
speccheck-store — integration test package

File: tests/integration/__init__.py

Purpose
- Test package marker file.

Functional requirements
- Must not import heavy modules at import time; keep test collection fast.
- Must not touch the network or any database outside the test's tmp_path.
"""
