"""
Colourful console logging for the frame synchronization tools.
"""

import ctypes
import logging
import os
import platform
import sys

ANSI_COLORS = {
    'RESET': '\033[0m',
    'RED': '\033[31m',
    'GREEN': '\033[32m',
    'YELLOW': '\033[33m',
    'BLUE': '\033[34m',
    'MAGENTA': '\033[35m',
    'CYAN': '\033[36m',
    'WHITE': '\033[37m',
    'BOLD': '\033[1m',
}
NO_COLORS = {name: '' for name in ANSI_COLORS}

PLAIN_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def _enable_windows_ansi():
    """Try to switch a Windows 10+ console into VT mode. Returns True on success."""
    try:
        kernel32 = ctypes.windll.kernel32
        handle = kernel32.GetStdHandle(-11)  # STD_OUTPUT_HANDLE
        if handle and handle != -1:
            kernel32.SetConsoleMode(handle, 7)  # ENABLE_VIRTUAL_TERMINAL_PROCESSING
            return True
    except (AttributeError, OSError, TypeError):
        pass
    return False


class ColorfulFormatter(logging.Formatter):
    """
    Console formatter that colours records by level and by message pattern

    Patterns:
    "---=== ... ===---"  stage header (bold magenta)
    "--- ..."            sub-stage header (bold cyan)
    "✓ ..."              success (green)
    "» ..."              detail line (blue)
    """

    def __init__(self, use_colors=None):
        super().__init__('%(message)s')
        if use_colors is None:
            use_colors = sys.stdout.isatty()
            if use_colors and platform.system() == 'Windows' \
                    and 'ANSICON' not in os.environ and 'WT_SESSION' not in os.environ:
                use_colors = _enable_windows_ansi()
        self.use_colors = use_colors
        self.colors = ANSI_COLORS if use_colors else NO_COLORS

    def format(self, record):
        msg = super().format(record)
        c = self.colors

        level_prefix = ""
        level_color = c['RESET']
        if record.levelno >= logging.ERROR:
            level_prefix = "❌ ERROR: "
            level_color = c['RED'] + c['BOLD']
        elif record.levelno >= logging.WARNING:
            if "FFmpeg" in msg:
                level_prefix = "⚠️ FFmpeg: "
                level_color = c['YELLOW']
            else:
                level_prefix = "⚠️ WARNING: "
                level_color = c['YELLOW'] + c['BOLD']
        elif record.levelno >= logging.INFO:
            if "---===" in msg:
                level_color = c['BOLD'] + c['MAGENTA']
            elif msg.lstrip().startswith("--- "):
                level_color = c['CYAN'] + c['BOLD']
            elif "✓" in msg:
                level_color = c['GREEN']
            elif "»" in msg:
                level_color = c['BLUE']
        else:
            level_prefix = "DEBUG: "
            level_color = c['WHITE']

        return f"{level_color}{level_prefix}{msg}{c['RESET']}"


def setup_colorful_logging(level=logging.INFO, log_file=None, use_colors=None):
    """
    Configure the root logger with a colourful stdout handler

    Parameters:
    level (int): Logging threshold
    log_file (str): Optional path of a plain-text log file
    use_colors (bool): Force colours on/off, auto-detected when None

    Returns:
    logging.Logger: The root logger
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    # Replace handlers from a previous call so reconfiguring does not duplicate output
    for handler in root_logger.handlers[:]:
        if getattr(handler, '_frame_sync_handler', False):
            root_logger.removeHandler(handler)
            handler.close()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(ColorfulFormatter(use_colors=use_colors))
    console_handler._frame_sync_handler = True
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file, encoding='utf-8')
        file_handler.setLevel(level)
        file_handler.setFormatter(logging.Formatter(PLAIN_FORMAT))
        file_handler._frame_sync_handler = True
        root_logger.addHandler(file_handler)

    return root_logger
