"""
Configuration for the miRNA pipeline.

Settings come from an optional YAML file and are overridden by command-line
options. All paths are relative to the working directory unless absolute.
"""

import logging
from dataclasses import dataclass, asdict, fields, replace
from pathlib import Path
from typing import Optional, Dict, Any, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml

from .exceptions import ConfigError

logger = logging.getLogger(__name__)

PATH_FIELDS = ("counts_dir", "annotation_file", "tables_dir", "images_dir", "log_file")

@dataclass(frozen=True)
class PipelineConfig:
    """Parameters of one pipeline run."""

    counts_dir: Path = Path("quant_mature_counts")
    annotation_file: Path = Path("miRNA_Btaurus.txt")
    tables_dir: Path = Path("Tables")
    images_dir: Path = Path("Figures")

    # Quantifier file selection and sample naming
    file_pattern: str = "^6"
    file_suffix: str = "_expressed.csv"
    sample_prefix: str = "A"

    # Label used as prefix of every output file
    method: str = "miRDeep2"

    # Expression filter: CPM > cpm_threshold in >= min_libraries libraries
    cpm_threshold: float = 50.0
    min_libraries: int = 10

    # TMM
    logratio_trim: float = 0.3
    sum_trim: float = 0.05
    reference_sample: Optional[str] = None

    timezone: str = "Europe/London"
    plot_format: str = "pdf"
    log_file: Optional[Path] = None

    def validate(self) -> "PipelineConfig":
        """Check parameter ranges, raising ConfigError on the first bad value."""
        if self.cpm_threshold < 0:
            raise ConfigError(f"cpm_threshold must be >= 0, got {self.cpm_threshold}")
        if self.min_libraries < 1:
            raise ConfigError(f"min_libraries must be >= 1, got {self.min_libraries}")
        for name in ("logratio_trim", "sum_trim"):
            value = getattr(self, name)
            if not 0 <= value < 0.5:
                raise ConfigError(f"{name} must be in [0, 0.5), got {value}")
        if not self.method:
            raise ConfigError("method label must not be empty")
        if self.plot_format not in ("pdf", "png", "svg"):
            raise ConfigError(f"Unsupported plot format: {self.plot_format}")
        try:
            ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError):
            raise ConfigError(f"Unknown time zone: {self.timezone}")
        return self

    def with_overrides(self, **overrides: Any) -> "PipelineConfig":
        """Return a copy with every non-None override applied."""
        values = {k: v for k, v in overrides.items() if v is not None}
        unknown = set(values) - {f.name for f in fields(self)}
        if unknown:
            raise ConfigError(f"Unknown configuration keys: {sorted(unknown)}")
        return replace(self, **_coerce_paths(values))

    def output_path(self, directory: Path, name: str) -> Path:
        """Output file named ``<method>_<name>`` inside ``directory``."""
        return Path(directory) / f"{self.method}_{name}"

    def to_dict(self) -> Dict[str, Any]:
        return {k: (str(v) if isinstance(v, Path) else v) for k, v in asdict(self).items()}

def _coerce_paths(values: Dict[str, Any]) -> Dict[str, Any]:
    return {
        k: (Path(v) if k in PATH_FIELDS and v is not None else v)
        for k, v in values.items()
    }

def load_config(config_file: Optional[Union[str, Path]] = None, **overrides: Any) -> PipelineConfig:
    """
    Build a validated configuration.

    Args:
        config_file: Optional YAML file with a mapping of configuration keys
        **overrides: Values taking precedence over the file (None is ignored)

    Returns:
        Validated PipelineConfig

    Raises:
        ConfigError: If the file cannot be read or holds invalid values
    """
    config = PipelineConfig()

    if config_file is not None:
        path = Path(config_file)
        try:
            with open(path, "r") as f:
                data = yaml.safe_load(f) or {}
        except FileNotFoundError:
            raise ConfigError(f"Configuration file not found: {path}")
        except yaml.YAMLError as e:
            raise ConfigError(f"Could not parse configuration file {path}: {e}")

        if not isinstance(data, dict):
            raise ConfigError(f"Configuration file {path} must contain a mapping")

        logger.debug(f"Loaded {len(data)} settings from {path}")
        config = config.with_overrides(**data)

    return config.with_overrides(**overrides).validate()
