from .general import setup_logger, redact_target
from .placeholders import parse_template, prepare_statement, normalize_value

__all__ = [
    "setup_logger",
    "redact_target",
    "parse_template",
    "prepare_statement",
    "normalize_value",
]
