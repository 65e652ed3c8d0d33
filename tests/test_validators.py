"""Tests for input validation in claudememory.validators."""

import math

import pytest

from claudememory.validators import (
    ValidationError,
    clamp_unit_interval,
    validate_instance_id,
    validate_memory_id,
    validate_message_id,
    validate_tags,
    validate_task_id,
    validate_text,
)


class TestValidateInstanceId:
    """Tests for instance ID validation."""

    @pytest.mark.parametrize("value", ["agent-1", "instance_1a2b3c4d", "A", "x" * 64])
    def test_valid_ids(self, value):
        """Test that well-formed IDs are accepted unchanged."""
        assert validate_instance_id(value) == value

    def test_strips_whitespace(self):
        """Test that surrounding whitespace is removed."""
        assert validate_instance_id("  agent-1 ") == "agent-1"

    @pytest.mark.parametrize("value", ["", "   ", "../etc", "agent 1", "agent/1", "-agent", "agent-", "x" * 65])
    def test_invalid_ids(self, value):
        """Test that malformed IDs raise ValidationError."""
        with pytest.raises(ValidationError):
            validate_instance_id(value)

    def test_rejects_non_string(self):
        """Test that non-strings raise ValidationError."""
        with pytest.raises(ValidationError):
            validate_instance_id(None)

    def test_validation_error_is_value_error(self):
        """Test that callers can catch ValidationError as ValueError."""
        with pytest.raises(ValueError):
            validate_instance_id("")


class TestEntityIds:
    """Tests for memory, task and message ID formats."""

    def test_memory_id(self):
        """Test memory ID format."""
        assert validate_memory_id("0123456789ab") == "0123456789ab"
        with pytest.raises(ValidationError):
            validate_memory_id("../../etc/passwd")
        with pytest.raises(ValidationError):
            validate_memory_id("ABCDEF012345")

    def test_task_id(self):
        """Test task ID format."""
        assert validate_task_id("task_0123456789ab") == "task_0123456789ab"
        with pytest.raises(ValidationError):
            validate_task_id("0123456789ab")

    def test_message_id(self):
        """Test message ID format."""
        assert validate_message_id("msg_0123456789ab") == "msg_0123456789ab"
        with pytest.raises(ValidationError):
            validate_message_id("msg_*")


class TestValidateText:
    """Tests for required text fields."""

    def test_accepts_text(self):
        """Test that non-blank text is returned."""
        assert validate_text("hello", "Title") == "hello"

    @pytest.mark.parametrize("value", ["", "   \n", None, 42])
    def test_rejects_blank_or_non_string(self, value):
        """Test that blank and non-string values are rejected."""
        with pytest.raises(ValidationError):
            validate_text(value, "Title")

    def test_max_length(self):
        """Test that over-long text is rejected with the field name."""
        with pytest.raises(ValidationError, match="Title too long"):
            validate_text("x" * 11, "Title", max_length=10)


class TestValidateTags:
    """Tests for tag normalization."""

    def test_strips_and_deduplicates_in_order(self):
        """Test order-preserving de-duplication after stripping."""
        assert validate_tags([" auth ", "api", "auth", ""]) == ["auth", "api"]

    def test_none_is_empty(self):
        """Test that None gives an empty list."""
        assert validate_tags(None) == []

    def test_single_string_is_one_tag(self):
        """Test that a bare string is not split into characters."""
        assert validate_tags("auth") == ["auth"]

    def test_rejects_non_string_tags(self):
        """Test that non-string tags raise ValidationError."""
        with pytest.raises(ValidationError):
            validate_tags(["ok", 3])


class TestClampUnitInterval:
    """Tests for importance/confidence clamping."""

    @pytest.mark.parametrize("value,expected", [(0.5, 0.5), (1.7, 1.0), (-3, 0.0), (1, 1.0)])
    def test_clamps(self, value, expected):
        """Test that values are clamped into [0, 1]."""
        assert clamp_unit_interval(value, "importance") == expected

    @pytest.mark.parametrize("value", [math.nan, "0.5", None, True])
    def test_rejects_invalid(self, value):
        """Test that NaN, strings, None and booleans are rejected."""
        with pytest.raises(ValidationError):
            clamp_unit_interval(value, "importance")
