"""
Exceptions raised by the miRNA pipeline.

Every error is fatal to a run. The CLI catches ``PipelineError`` and reports
the stage that failed.
"""

class PipelineError(Exception):
    """Base class for all pipeline failures."""

    stage = "pipeline"

    def __str__(self) -> str:
        return f"[{self.stage}] {super().__str__()}"

class IngestionError(PipelineError):
    """Missing or malformed input file, duplicate keys, or no files found."""

    stage = "ingestion"

class JoinError(PipelineError):
    """Annotation and counts could not be joined into a usable table."""

    stage = "annotation"

class AlignmentError(PipelineError):
    """Sample metadata rows do not line up with the counts matrix columns."""

    stage = "alignment"

class ParseError(PipelineError):
    """A sample identifier does not match any known time point or group."""

    stage = "metadata"

class ConfigError(PipelineError):
    """Invalid pipeline parameters."""

    stage = "config"
