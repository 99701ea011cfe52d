"""Key-value storage backends for the cache.

Both backends store plain strings; encoding and expiry live in CacheStore.
"""

from abc import ABC, abstractmethod
from collections.abc import Iterator

from sqlmodel import Session, SQLModel, create_engine, select

from subdrop.models.cache import CacheRecord


class KeyValueStore(ABC):
    """Persistent string key-value store local to the installation."""

    @abstractmethod
    def get(self, key: str) -> str | None:
        pass

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        pass

    @abstractmethod
    def delete(self, key: str) -> None:
        pass

    @abstractmethod
    def keys(self) -> Iterator[str]:
        pass

    def set_many(self, items: dict[str, str]) -> None:
        for key, value in items.items():
            self.set(key, value)

    def delete_many(self, keys: list[str]) -> None:
        for key in keys:
            self.delete(key)


class MemoryKeyValueStore(KeyValueStore):
    """In-process store for tests and throwaway sessions."""

    def __init__(self):
        self._data: dict[str, str] = {}

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> Iterator[str]:
        return iter(list(self._data))


class SqlKeyValueStore(KeyValueStore):
    """SQLite-backed store using the ``cache_entries`` table.

    Uses a synchronous engine; every call opens a short-lived session.
    """

    def __init__(self, database_url: str, echo: bool = False):
        connect_args = {"check_same_thread": False} if database_url.startswith("sqlite") else {}
        self.engine = create_engine(database_url, echo=echo, connect_args=connect_args)
        SQLModel.metadata.create_all(self.engine, tables=[CacheRecord.__table__])

    def get(self, key: str) -> str | None:
        with Session(self.engine) as session:
            record = session.get(CacheRecord, key)
            return record.value if record else None

    def set(self, key: str, value: str) -> None:
        self.set_many({key: value})

    def set_many(self, items: dict[str, str]) -> None:
        # one transaction so a value and its expiry land together
        with Session(self.engine) as session:
            for key, value in items.items():
                record = session.get(CacheRecord, key)
                if record is None:
                    session.add(CacheRecord(key=key, value=value))
                else:
                    record.value = value
                    session.add(record)
            session.commit()

    def delete(self, key: str) -> None:
        self.delete_many([key])

    def delete_many(self, keys: list[str]) -> None:
        with Session(self.engine) as session:
            for key in keys:
                record = session.get(CacheRecord, key)
                if record is not None:
                    session.delete(record)
            session.commit()

    def keys(self) -> Iterator[str]:
        with Session(self.engine) as session:
            return iter(list(session.exec(select(CacheRecord.key)).all()))
