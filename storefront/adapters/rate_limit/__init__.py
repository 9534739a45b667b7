"""Rate limiting adapters.

This package provides a small abstraction layer so the storefront can run an
in-memory sliding-window throttle per process and later migrate to a shared
store without changing the HTTP layer.
"""
