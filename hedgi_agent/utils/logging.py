from __future__ import annotations

import logging

_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
_NOISY_LOGGERS = ("urllib3", "httpx", "openai", "pymongo")


def configure_logging(level: str = "INFO") -> None:
    resolved = getattr(logging, str(level or "INFO").upper(), logging.INFO)
    logging.basicConfig(level=resolved, format=_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(resolved, logging.WARNING))
