"""Console logging setup for interactive use and scripts.

The library itself only attaches a `NullHandler`; call
`enable_logging_handlers` to see its log output.

:copyright: Copyright 2024 by MLL <mll@mll.bio>.
:license: Apache 2.0. See LICENSE for details.
"""

from __future__ import annotations

import logging
import re
from typing import Optional

from rich.highlighter import ReprHighlighter
from rich.logging import RichHandler
from rich.text import Text


CONSOLE_FORMAT_STR = "%(name)s: %(message)s"


class StateNameHighlighter(ReprHighlighter):
    """Highlight qualified state variable names such as `biceps.fiber_length`."""

    _STATE_NAME = re.compile(r"\b\w+\.(?:activation|fiber_length)\b")

    def highlight(self, text: Text) -> None:
        super().highlight(text)
        for m in self._STATE_NAME.finditer(text.plain):
            text.stylize("repr.attrib_name", m.start(), m.end())


def _console_handler_pred(h: logging.Handler) -> bool:
    return isinstance(h, logging.StreamHandler) and not isinstance(h, logging.FileHandler)


def _remove_handlers(logger: logging.Logger, *, predicate) -> None:
    """Remove and close all handlers on `logger` for which `predicate(handler)` is True."""
    for h in list(logger.handlers):
        if predicate(h):
            logger.removeHandler(h)
            h.close()


def _make_console_handler(level: int) -> RichHandler:
    handler = RichHandler(level=level, highlighter=StateNameHighlighter())
    handler.setFormatter(logging.Formatter(CONSOLE_FORMAT_STR))
    return handler


def enable_logging_handlers(
    console_level: Optional[int | str] = None,
    pkg_console_levels: Optional[dict[str, int | str]] = None,
) -> RichHandler:
    """Attach a Rich console handler to the root logger.

    Args:
        console_level: Level of the root console handler. Defaults to the
            package's `LOG_LEVEL`.
        pkg_console_levels: Per-logger console levels, e.g.
            `{"myotendon.equilibrium": "DEBUG"}`.

    Returns:
        The root console handler.
    """
    from myotendon import LOG_LEVEL

    root = logging.getLogger()
    root.setLevel(1)

    _remove_handlers(root, predicate=_console_handler_pred)
    console_h = _make_console_handler(console_level or LOG_LEVEL)
    root.addHandler(console_h)

    for pkg, lvl in (pkg_console_levels or {}).items():
        lg = logging.getLogger(pkg)
        _remove_handlers(lg, predicate=_console_handler_pred)
        lg.addHandler(_make_console_handler(lvl))
        lg.propagate = False

    logging.captureWarnings(True)
    return console_h
