"""Logging setup for entry points of the gate."""

from __future__ import annotations

import logging
import os
from typing import Final

from .errors import ConfigurationError

LOGGER_NAME: Final = "entitygate"
LOG_LEVEL_ENV_VAR: Final = "ENTITYGATE_LOG_LEVEL"
LOG_FORMAT: Final = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def resolve_log_level(default: int = logging.INFO) -> int:
    """Return the level named by ``ENTITYGATE_LOG_LEVEL``, or ``default`` when unset.

    Accepts level names in any case (``debug``, ``WARNING``) or a numeric level.
    """

    raw = os.getenv(LOG_LEVEL_ENV_VAR)
    if raw is None or not raw.strip():
        return default
    value = raw.strip()
    if value.isdigit():
        return int(value)
    level = logging.getLevelNamesMapping().get(value.upper())
    if level is None:
        raise ConfigurationError(f"{LOG_LEVEL_ENV_VAR} has an unknown log level: {raw!r}")
    return level


def configure_logging(*, level: int | None = None, force: bool = False) -> None:
    """Attach a console handler to the root logger and set the gate's log level.

    The root handler is only installed when none exists yet (or with ``force``).
    The level applies to the ``entitygate`` logger hierarchy so gates log their
    attempts without making third-party loggers chatty.
    """

    logging.basicConfig(format=LOG_FORMAT, datefmt="%H:%M:%S", force=force)
    logging.getLogger(LOGGER_NAME).setLevel(level if level is not None else resolve_log_level())
