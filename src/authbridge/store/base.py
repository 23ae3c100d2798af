from __future__ import annotations

import abc
import json
from typing import TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from authbridge.exceptions import (
    KeyNotFoundError,
    MalformedValueError,
    SchemaMismatchError,
)

ModelT = TypeVar("ModelT", bound=BaseModel)


class BaseStore(abc.ABC):
    """Ephemeral keyed store over opaque string values with per-key expiry.

    Every operation touches a single key, except ``delete`` which accepts
    several. ``pop`` is an atomic fetch-and-delete.
    """

    @abc.abstractmethod
    async def get(self, key: str) -> str | None: ...

    @abc.abstractmethod
    async def set(self, key: str, value: str, ttl: float | None = None) -> None: ...

    @abc.abstractmethod
    async def delete(self, *keys: str) -> int: ...

    @abc.abstractmethod
    async def pop(self, key: str) -> str | None: ...

    async def aclose(self) -> None:
        pass

    async def get_model(self, key: str, model: type[ModelT]) -> ModelT:
        """Fetch and validate a stored record.

        Raises:
            KeyNotFoundError: if the key is absent or expired
            MalformedValueError: if the value is not JSON
            SchemaMismatchError: if the JSON does not match ``model``
        """
        return self._decode(key, await self.get(key), model)

    async def pop_model(self, key: str, model: type[ModelT]) -> ModelT:
        """Atomically fetch, delete and validate a stored record.

        The key is gone afterwards even when validation fails.
        """
        return self._decode(key, await self.pop(key), model)

    async def set_model(
        self, key: str, value: BaseModel, ttl: float | None = None
    ) -> None:
        await self.set(key, value.model_dump_json(), ttl)

    @staticmethod
    def _decode(key: str, raw: str | None, model: type[ModelT]) -> ModelT:
        if raw is None:
            raise KeyNotFoundError(key)
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise MalformedValueError(key, raw) from e
        try:
            return model.model_validate(data)
        except PydanticValidationError as e:
            errors = [
                f"{'.'.join(str(p) for p in err['loc']) or 'value'}: {err['msg']}"
                for err in e.errors()
            ]
            raise SchemaMismatchError(key, errors) from e
