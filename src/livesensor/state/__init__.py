"""State/store layer.

This package is the single source of truth for the session snapshot that
the presentation layer reads: connection state, latest reading, last error
and the trailing window.
"""
