"""Mapping engine backed by SQLAlchemy engines and ORM sessions."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from sqlalchemy import create_engine, inspect
from sqlalchemy.engine import make_url
from sqlalchemy.orm import Session, configure_mappers

from entitygate.domain.model import ShapeRegistry

from .copying import SqlAlchemyDetachedCopyProvider
from .errors import is_malformed_query
from .session import SqlAlchemyMappingSession
from .shapes import describe_mapper

if TYPE_CHECKING:
    from sqlalchemy.engine import Engine
    from sqlalchemy.orm import registry

    from entitygate.config import GateSettings
    from entitygate.domain.model import ShapeDescriptor
    from entitygate.domain.ports import DetachedCopyProvider
    from entitygate.domain.token import SessionToken

log = logging.getLogger(__name__)

_TIMEOUT_CONNECT_ARGS = {
    "sqlite": "timeout",
    "postgresql": "connect_timeout",
    "mysql": "connect_timeout",
}


class SqlAlchemyMappingEngine:
    """Open sessions on the mapped classes of one ``registry``.

    Without an injected ``engine``, one SQLAlchemy engine is created (and kept)
    per database URI and command timeout.
    """

    def __init__(
        self,
        mapper_registry: registry,
        *,
        engine: Engine | None = None,
        copier: DetachedCopyProvider | None = None,
    ) -> None:
        configure_mappers()
        self._engine = engine
        self._engines: dict[tuple[str, int], Engine] = {}
        self._copier = copier or SqlAlchemyDetachedCopyProvider()
        self._shapes = ShapeRegistry(describe_mapper(mapper) for mapper in mapper_registry.mappers)
        log.info("Mapping engine ready with shapes: %s", ", ".join(self._shapes.names()))

    @property
    def shapes(self) -> ShapeRegistry:
        return self._shapes

    @property
    def copier(self) -> DetachedCopyProvider:
        return self._copier

    def describe(self, entity_type: type, *, name: str | None = None) -> ShapeDescriptor:
        """Register ``entity_type`` (a mapped class) under ``name`` and return its shape."""

        return self._shapes.register(describe_mapper(inspect(entity_type), name=name))

    def engine_for(self, settings: GateSettings) -> Engine:
        if self._engine is not None:
            return self._engine
        key = (settings.database_uri, settings.timeout_seconds)
        engine = self._engines.get(key)
        if engine is None:
            url = make_url(settings.database_uri)
            connect_args: dict[str, Any] = {}
            timeout_arg = _TIMEOUT_CONNECT_ARGS.get(url.get_backend_name())
            if timeout_arg is not None:
                connect_args[timeout_arg] = settings.timeout_seconds
            log.info("Creating engine for connection %s", settings.connection_name)
            engine = create_engine(url, connect_args=connect_args)
            self._engines[key] = engine
        return engine

    def open_session(
        self, settings: GateSettings, *, token: SessionToken
    ) -> SqlAlchemyMappingSession:
        session = Session(
            bind=self.engine_for(settings), autoflush=False, expire_on_commit=False
        )
        return SqlAlchemyMappingSession(session, self._shapes, token=token)

    def is_malformed_query(self, error: BaseException) -> bool:
        return is_malformed_query(error)

    def dispose(self) -> None:
        """Dispose the engines this mapping engine created."""

        for engine in self._engines.values():
            engine.dispose()
        self._engines.clear()
