"""
vecsync test suite.

- Unit tests for individual components
- Integration tests for the watch-to-store pipeline
"""
