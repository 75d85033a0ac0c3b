"""
Integration layer: YAML pipeline config, in-memory collaborators, ledger export
"""

from .config import (
    PipelineConfig,
    apply_pipeline_config,
    load_pipeline_config,
    parse_pipeline_config,
)
from .export import LedgerExport, export_runner, ledger_from_export
from .memory import MemoryBlock, MemoryVaultBlock, TokenBank

__all__ = [
    "PipelineConfig",
    "apply_pipeline_config",
    "load_pipeline_config",
    "parse_pipeline_config",
    "LedgerExport",
    "export_runner",
    "ledger_from_export",
    "MemoryBlock",
    "MemoryVaultBlock",
    "TokenBank",
]
