"""
Launcher Logging Configuration
==============================

Console logging for the launcher. Records go to stderr so that stdout stays
reserved for the few lines consuming automation parses (``launcher: ...``).
Level names are coloured when stderr is an interactive terminal.
"""

import logging
import sys
from typing import Optional, TextIO

import colorama
from colorama import Fore, Style

LOG_FORMAT = '%(asctime)s | %(levelname)-8s | %(name)s | %(message)s'
DATE_FORMAT = '%H:%M:%S'


class LauncherLogFormatter(logging.Formatter):
    """Formatter that colours the level name"""

    COLORS = {
        'DEBUG': Fore.CYAN,
        'INFO': Fore.GREEN,
        'WARNING': Fore.YELLOW + Style.BRIGHT,
        'ERROR': Fore.RED,
        'CRITICAL': Fore.RED + Style.BRIGHT,
    }

    def __init__(self, use_color: bool = True):
        super().__init__(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)
        self.use_color = use_color

    def format(self, record):
        if not self.use_color:
            return super().format(record)

        original = record.levelname
        color = self.COLORS.get(original, '')
        # pad before colouring so the column width ignores escape codes
        record.levelname = f"{color}{original:<8}{Style.RESET_ALL}"
        try:
            return super().format(record)
        finally:
            record.levelname = original


def setup_logging(verbose: bool = False, stream: Optional[TextIO] = None) -> logging.Logger:
    """
    Install the launcher's console handler on the ``network_launcher`` logger.

    Safe to call more than once; a previously installed launcher handler is
    replaced rather than duplicated.
    """
    stream = stream or sys.stderr
    use_color = hasattr(stream, "isatty") and stream.isatty()
    if use_color:
        colorama.just_fix_windows_console()

    root = logging.getLogger("network_launcher")
    root.setLevel(logging.DEBUG if verbose else logging.INFO)

    for handler in list(root.handlers):
        if getattr(handler, "_launcher_handler", False):
            root.removeHandler(handler)

    handler = logging.StreamHandler(stream)
    handler.setFormatter(LauncherLogFormatter(use_color=use_color))
    handler._launcher_handler = True
    root.addHandler(handler)
    root.propagate = False

    return root
