"""
Common utility functions for the kernel preflight pipeline.
"""

import logging
import os
import shutil
import subprocess
import tempfile
import time
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Tuple

import requests
from rich.console import Console
from rich.logging import RichHandler


# Rich console for output
console = Console()


def setup_logging(
    name: str = "kpreflight",
    level: int = logging.INFO,
    log_file: Optional[Path] = None,
) -> logging.Logger:
    """Set up logging with Rich handler."""
    logger = logging.getLogger(name)
    logger.setLevel(logging.DEBUG if log_file else level)

    # Clear existing handlers
    logger.handlers.clear()

    # Console handler with Rich
    console_handler = RichHandler(
        console=console,
        show_time=True,
        show_path=False,
        rich_tracebacks=True,
    )
    console_handler.setLevel(level)
    logger.addHandler(console_handler)

    # File handler keeps the full debug trail
    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        )
        logger.addHandler(file_handler)

    return logger


# Default logger
logger = setup_logging()


def check_network(
    hosts: Optional[List[str]] = None,
    timeout: int = 30,
    retries: int = 3,
) -> bool:
    """
    Check network connectivity to required hosts.

    Args:
        hosts: List of hosts to check (default: github.com, git.kernel.org)
        timeout: Connection timeout in seconds
        retries: Number of retry attempts

    Returns:
        True if any host is reachable, False otherwise
    """
    if hosts is None:
        hosts = ["github.com", "git.kernel.org"]

    for attempt in range(1, retries + 1):
        for host in hosts:
            try:
                response = requests.head(
                    f"https://{host}",
                    timeout=timeout,
                    allow_redirects=True,
                )
                if response.status_code < 500:
                    logger.debug(f"Network check passed: {host} reachable")
                    return True
            except requests.RequestException:
                continue

        if attempt < retries:
            logger.warning(f"Network check attempt {attempt}/{retries} failed, retrying...")
            time.sleep(5)

    logger.error(f"Network is not available after {retries} attempts")
    return False


def run_command(
    cmd: List[str],
    cwd: Optional[Path] = None,
    timeout: Optional[int] = None,
    log_file: Optional[Path] = None,
) -> Tuple[int, str, str]:
    """
    Run a command and wait for it to finish.

    Args:
        cmd: Command and arguments as list
        cwd: Working directory
        timeout: Command timeout in seconds
        log_file: Append combined stdout/stderr here instead of capturing it

    Returns:
        Tuple of (return_code, stdout, stderr)
    """
    try:
        if log_file:
            log_file.parent.mkdir(parents=True, exist_ok=True)
            with open(log_file, "a") as log:
                log.write(f"$ {' '.join(str(c) for c in cmd)}\n")
                log.flush()
                result = subprocess.run(
                    [str(c) for c in cmd],
                    cwd=cwd,
                    timeout=timeout,
                    stdout=log,
                    stderr=subprocess.STDOUT,
                    text=True,
                )
            return result.returncode, "", ""

        result = subprocess.run(
            [str(c) for c in cmd],
            cwd=cwd,
            timeout=timeout,
            capture_output=True,
            text=True,
        )
        return result.returncode, result.stdout or "", result.stderr or ""
    except subprocess.TimeoutExpired:
        logger.error(f"Command timed out after {timeout}s: {' '.join(str(c) for c in cmd)}")
        return -1, "", f"Command timed out after {timeout}s"
    except OSError as e:
        logger.error(f"Command failed: {e}")
        return -1, "", str(e)


def timestamp() -> str:
    """Timestamp suitable for file names."""
    return datetime.now().strftime("%Y%m%d_%H%M%S")


def backup_file(file_path: Path, backup_dir: Path, suffix: str = "") -> Path:
    """
    Copy a file into a backup directory.

    Args:
        file_path: File to back up
        backup_dir: Directory to store backup
        suffix: Appended to the backup file name

    Returns:
        Path to backup file
    """
    backup_dir.mkdir(parents=True, exist_ok=True)
    backup_path = backup_dir / f"{file_path.name}{suffix}"
    shutil.copy2(file_path, backup_path)
    return backup_path


def atomic_copy(src: Path, dest: Path) -> None:
    """Copy src over dest so readers never observe a partial file."""
    dest.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{dest.name}.", dir=dest.parent)
    os.close(fd)
    try:
        shutil.copyfile(src, tmp_name)
        os.replace(tmp_name, dest)
    except OSError:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise


def format_duration(seconds: int) -> str:
    """Format duration in seconds to human-readable string."""
    if seconds < 60:
        return f"{seconds}s"
    elif seconds < 3600:
        minutes = seconds // 60
        secs = seconds % 60
        return f"{minutes}m {secs}s"
    else:
        hours = seconds // 3600
        minutes = (seconds % 3600) // 60
        return f"{hours}h {minutes}m"
