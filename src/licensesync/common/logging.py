"""Shared logging helpers for licensesync."""

from __future__ import annotations

import logging


def configure_logging(*, level: int = logging.INFO, force: bool = False) -> None:
    """Initialise the root logger once with defaults suited to a scheduled worker.

    Thin wrapper over ``logging.basicConfig``: INFO level and a compact format that
    keeps the logger name visible, so sync, scheduler and monitor output can be told
    apart in one stream. Pass ``force=True`` to reconfigure during tests.
    """

    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        datefmt="%H:%M:%S",
        force=force,
    )
