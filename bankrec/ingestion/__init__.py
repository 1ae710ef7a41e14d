"""Ingestion module for parsing, validating and importing bank statements."""

from .categorizer import categorize
from .importer import ImportResult, StatementImportPipeline, compute_statement_hash
from .parsers import ParsedStatement, StatementContentParser, parse_statement_content
from .validator import BalanceValidationResult, BalanceValidator

__all__ = [
    "categorize",
    "ImportResult",
    "StatementImportPipeline",
    "compute_statement_hash",
    "ParsedStatement",
    "StatementContentParser",
    "parse_statement_content",
    "BalanceValidationResult",
    "BalanceValidator",
]
