"""
Colored CLI output utilities for stackreject.

Provides styled terminal output with colors, progress bars, and status indicators.

Author: Olivier Vitrac, PhD, HDR
        Generative Simulation Initiative
        olivier.vitrac@gmail.com
"""

from __future__ import annotations

import os
import sys
import time

from colorama import Fore, Style, init as colorama_init
from tqdm import tqdm

from .utils import format_duration

# Initialize colorama for cross-platform support
colorama_init(autoreset=True)


class Colors:
    """Color constants for consistent styling."""

    HEADER = Fore.CYAN + Style.BRIGHT
    STAGE = Fore.BLUE + Style.BRIGHT

    SUCCESS = Fore.GREEN + Style.BRIGHT
    ERROR = Fore.RED + Style.BRIGHT
    INFO = Fore.WHITE

    VALUE = Fore.YELLOW + Style.BRIGHT
    METRIC = Fore.MAGENTA

    PROGRESS = Fore.GREEN
    RESET = Style.RESET_ALL


class Symbols:
    """Unicode symbols for status indicators."""

    CHECK = "\u2714"  # ✔
    CROSS = "\u2718"  # ✘

    @classmethod
    def use_ascii(cls):
        """Switch to ASCII-only fallbacks."""
        cls.CHECK = "[OK]"
        cls.CROSS = "[X]"


def print_header(text: str, width: int = 60) -> None:
    """Print a styled section header."""
    line = "═" * width
    print(f"\n{Colors.HEADER}{line}")
    print(f"  {text}")
    print(f"{line}{Colors.RESET}")


def print_error(text: str) -> None:
    """Print an error message."""
    print(f"{Colors.ERROR}{Symbols.CROSS} {text}{Colors.RESET}")


def print_metric(name: str, value: str | int | float) -> None:
    """Print a metric with value."""
    print(f"  {Colors.METRIC}{name}: {Colors.VALUE}{value}{Colors.RESET}")


def create_progress_bar(
    total: int,
    desc: str,
    unit: str = "chunk",
    disable: bool = False,
) -> tqdm:
    """
    Create a styled progress bar.

    Parameters
    ----------
    total : int
        Total number of items.
    desc : str
        Description text.
    unit : str, default "chunk"
        Unit name for items.
    disable : bool, default False
        Disable the progress bar.

    Returns
    -------
    tqdm
        Configured progress bar.
    """
    return tqdm(
        total=total,
        desc=f"{Colors.PROGRESS}{desc}{Colors.RESET}",
        unit=unit,
        bar_format="{l_bar}{bar}| {n_fmt}/{total_fmt} [{elapsed}<{remaining}]",
        ncols=80,
        colour="green",
        disable=disable,
    )


class RunProgress:
    """
    Display the stages of a stacking run.

    Example
    -------
    >>> progress = RunProgress(total_stages=3)
    >>> progress.start_stage(1, "Loading frames")
    >>> progress.update_detail("Read 24 frames")
    >>> progress.complete_stage()
    """

    def __init__(self, total_stages: int = 3, quiet: bool = False):
        self.total_stages = total_stages
        self.quiet = quiet
        self._stage_start_time: float | None = None

    def start_stage(self, stage_num: int, name: str) -> None:
        """Start a new stage."""
        if self.quiet:
            return
        self._stage_start_time = time.time()
        print(f"\n{Colors.STAGE}▶ Stage {stage_num}/{self.total_stages}: {name}{Colors.RESET}")

    def update_detail(self, text: str) -> None:
        """Update with a detail message."""
        if self.quiet:
            return
        print(f"   {Colors.INFO}{text}{Colors.RESET}")

    def complete_stage(self, message: str = "Complete") -> None:
        """Mark current stage as complete."""
        if self.quiet:
            return
        if self._stage_start_time:
            elapsed = format_duration(time.time() - self._stage_start_time)
            print(f"   {Colors.SUCCESS}{Symbols.CHECK} {message} ({elapsed}){Colors.RESET}")
        else:
            print(f"   {Colors.SUCCESS}{Symbols.CHECK} {message}{Colors.RESET}")


def setup_terminal() -> None:
    """Switch to ASCII symbols on terminals without UTF-8 support."""
    if os.environ.get("TERM") == "dumb":
        Symbols.use_ascii()
    elif "utf" not in os.environ.get("LANG", "").lower() and sys.platform == "win32":
        Symbols.use_ascii()
