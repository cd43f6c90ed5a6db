import asyncio
from collections.abc import AsyncGenerator, Hashable
from contextlib import asynccontextmanager
from datetime import UTC, datetime

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from geonotes.errors import ValidationError


def now() -> datetime:
    return datetime.now(UTC)


class KeyedLock:
    """Per-key asyncio locks, dropped once no task holds or waits for them."""

    def __init__(self) -> None:
        self._locks: dict[Hashable, asyncio.Lock] = {}
        self._users: dict[Hashable, int] = {}

    @asynccontextmanager
    async def hold(self, key: Hashable) -> AsyncGenerator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)


def parse_model[M: BaseModel](model: type[M], data: object) -> M:
    """Validate input data into a model, raising the application's ValidationError."""
    try:
        return model.model_validate(data)
    except PydanticValidationError as e:
        parts = []
        for err in e.errors():
            location = ".".join(str(part) for part in err["loc"]) or "payload"
            parts.append(f"{location}: {err['msg']}")
        raise ValidationError("; ".join(parts)) from None
