"""Tests for shared helpers."""

import asyncio

import pytest

from geonotes.core.modules.note.models import NoteCreate
from geonotes.errors import ValidationError
from geonotes.utils import KeyedLock, parse_model


class TestKeyedLock:
    """Tests for KeyedLock."""

    async def test_same_key_is_exclusive(self):
        """Test that holders of the same key run one at a time."""
        locks = KeyedLock()
        events = []

        async def critical(name):
            async with locks.hold("u1"):
                events.append(f"{name}:enter")
                await asyncio.sleep(0)
                events.append(f"{name}:exit")

        await asyncio.gather(critical("a"), critical("b"))
        assert events == ["a:enter", "a:exit", "b:enter", "b:exit"]

    async def test_different_keys_interleave(self):
        """Test that different keys do not block each other."""
        locks = KeyedLock()
        events = []

        async def critical(key):
            async with locks.hold(key):
                events.append(f"{key}:enter")
                await asyncio.sleep(0)
                events.append(f"{key}:exit")

        await asyncio.gather(critical("u1"), critical("u2"))
        assert events[:2] == ["u1:enter", "u2:enter"]

    async def test_locks_released_after_use(self):
        """Test that unused locks are dropped."""
        locks = KeyedLock()
        async with locks.hold("u1"):
            assert len(locks) == 1
        assert len(locks) == 0

    async def test_lock_released_on_error(self):
        """Test that a lock is released when the body raises."""
        locks = KeyedLock()
        with pytest.raises(RuntimeError):
            async with locks.hold("u1"):
                raise RuntimeError("boom")
        assert len(locks) == 0


class TestParseModel:
    """Tests for parse_model."""

    def test_valid_data(self):
        """Test that valid data is parsed into the model."""
        data = parse_model(NoteCreate, {"latitude": 1, "longitude": 2, "description": "x"})
        assert (data.latitude, data.longitude) == (1.0, 2.0)

    def test_errors_are_listed_by_field(self):
        """Test that every invalid field is named in the message."""
        with pytest.raises(ValidationError) as exc_info:
            parse_model(NoteCreate, {"latitude": "north"})
        message = str(exc_info.value)
        assert "latitude:" in message
        assert "longitude: Field required" in message
        assert "description: Field required" in message

    def test_non_object_input(self):
        """Test that non-object input raises ValidationError."""
        with pytest.raises(ValidationError, match="payload"):
            parse_model(NoteCreate, 42)
