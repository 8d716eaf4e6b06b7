# FILE: patchgate/__init__.py
"""patchgate: deploy generated code into a multi-module codebase, build what
changed, run only the affected tests, and roll back on demand."""

__version__ = "0.3.0"
