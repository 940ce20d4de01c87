"""
Utility functions for the miRNA Pipeline.

This module provides common utility functions used across the pipeline,
including logging setup, file validation and all-or-nothing output writing.
"""

import json
import logging
import os
from contextlib import contextmanager
from pathlib import Path
from typing import Optional, Dict, Any, List, Union, Iterator

from rich.logging import RichHandler

logger = logging.getLogger(__name__)

def setup_logging(level: int = logging.INFO, log_file: Optional[Path] = None) -> None:
    """
    Set up logging with Rich handler for colored output.

    Args:
        level: Logging level (default: INFO)
        log_file: Optional file receiving a plain-text copy of the log
    """
    handlers: List[logging.Handler] = [RichHandler(rich_tracebacks=True)]
    if log_file is not None:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s %(name)s %(levelname)s %(message)s")
        )
        handlers.append(file_handler)

    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=handlers,
        force=True,
    )

def validate_file_exists(file_path: Union[str, Path]) -> Path:
    """
    Validate that a file exists and return Path object.

    Args:
        file_path: Path to file

    Returns:
        Path object if file exists

    Raises:
        FileNotFoundError: If file doesn't exist
    """
    path = Path(file_path)
    if not path.is_file():
        raise FileNotFoundError(f"File not found: {path}")
    return path

def validate_directory_exists(dir_path: Union[str, Path], create: bool = False) -> Path:
    """
    Validate that a directory exists, optionally create it.

    Args:
        dir_path: Path to directory
        create: Whether to create directory if it doesn't exist

    Returns:
        Path object

    Raises:
        FileNotFoundError: If directory doesn't exist and create=False
    """
    path = Path(dir_path)
    if not path.is_dir():
        if create:
            path.mkdir(parents=True, exist_ok=True)
        else:
            raise FileNotFoundError(f"Directory not found: {path}")
    return path

def save_metrics_json(metrics: Dict[str, Any], output_file: Union[str, Path]) -> None:
    """
    Save metrics dictionary to JSON file.

    Args:
        metrics: Dictionary of metrics
        output_file: Output JSON file path
    """
    with open(output_file, 'w') as f:
        json.dump(metrics, f, indent=2, default=str)

def format_number(num: Union[int, float], precision: int = 2) -> str:
    """
    Format number with appropriate precision and units.

    Args:
        num: Number to format
        precision: Decimal precision

    Returns:
        Formatted number string
    """
    if num >= 1e9:
        return f"{num/1e9:.{precision}f}B"
    elif num >= 1e6:
        return f"{num/1e6:.{precision}f}M"
    elif num >= 1e3:
        return f"{num/1e3:.{precision}f}K"
    else:
        return f"{num:.{precision}f}"

class StagedOutput:
    """
    Collects the output files of one pipeline stage.

    Callers write to the temporary path returned by :meth:`path`; the files
    are moved to their final names only when :func:`staged_outputs` exits
    without an error.
    """

    def __init__(self, stage: str):
        self.stage = stage
        self._pending: Dict[Path, Path] = {}

    def path(self, final_path: Union[str, Path]) -> Path:
        final_path = Path(final_path)
        validate_directory_exists(final_path.parent, create=True)
        tmp_path = final_path.with_name(f".{final_path.name}.tmp")
        self._pending[final_path] = tmp_path
        return tmp_path

    def commit(self) -> List[Path]:
        """
        Move every temporary file to its final name.

        Files already present are set aside first, so if any move fails the
        stage's earlier moves are undone and the previous files restored.
        """
        moved: List[tuple] = []
        try:
            for final_path, tmp_path in self._pending.items():
                backup = None
                if final_path.exists():
                    backup = final_path.with_name(f".{final_path.name}.bak")
                    os.replace(final_path, backup)
                moved.append((final_path, backup))
                os.replace(tmp_path, final_path)
        except OSError:
            logger.error(f"Stage '{self.stage}' could not move its outputs; restoring previous files")
            for final_path, backup in reversed(moved):
                if backup is not None:
                    os.replace(backup, final_path)
                elif final_path.exists():
                    final_path.unlink()
            self.discard()
            raise

        for final_path, backup in moved:
            if backup is not None:
                backup.unlink()
            logger.info(f"Wrote {final_path}")
        return list(self._pending)

    def discard(self) -> None:
        for tmp_path in self._pending.values():
            if tmp_path.exists():
                tmp_path.unlink()

@contextmanager
def staged_outputs(stage: str) -> Iterator[StagedOutput]:
    """Write all files of a stage, or none of them."""
    staged = StagedOutput(stage)
    try:
        yield staged
    except BaseException:
        logger.error(f"Stage '{stage}' failed; no output files were written")
        staged.discard()
        raise
    staged.commit()
