"""Logging setup for the GeoLens service and engine.

Every module logs through ``logging.getLogger(__name__)``; this module only
installs the root handler once, at application start-up.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from geolens.core import config

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

_HANDLER_NAME = "geolens"


def configure_logging(settings: config.Settings) -> None:
    """Install the GeoLens stream handler on the root logger.

    Calling this more than once does not stack handlers; the level is
    refreshed from settings on every call.

    Args:
        settings: Application settings providing ``log_level``.
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(settings.log_level.upper())

    if not any(h.get_name() == _HANDLER_NAME for h in root_logger.handlers):
        handler = logging.StreamHandler()
        handler.set_name(_HANDLER_NAME)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root_logger.addHandler(handler)

    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
