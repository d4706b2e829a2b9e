"""Test utilities for treb applications.

    from treb.testing import TestClient
"""

from treb.testing.client import TestClient

__all__ = ["TestClient"]
