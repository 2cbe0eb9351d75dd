"""
Tests for backend enumeration.

This module tests the BackendType enum.
"""

from enum import Enum

import pytest

from stepflow.backend import BackendType


class TestBackendType:
    """Test cases for BackendType enum."""

    def test_backend_type_values(self):
        """Test backend type enum values."""
        assert BackendType.IN_MEMORY.value == "in_memory"
        assert BackendType.SQLITE.value == "sqlite"

    def test_backend_type_from_string(self):
        """Test creating BackendType from string."""
        assert BackendType("in_memory") == BackendType.IN_MEMORY
        assert BackendType("sqlite") == BackendType.SQLITE

    def test_backend_type_invalid_string(self):
        """Test creating BackendType from invalid string."""
        with pytest.raises(ValueError):
            BackendType("temporal")

    def test_backend_type_enum_properties(self):
        """Test BackendType enum properties."""
        assert issubclass(BackendType, Enum)
        assert len(BackendType) == 2
        assert len({backend.value for backend in BackendType}) == 2
