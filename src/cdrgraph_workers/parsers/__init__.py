"""File parsers for CDR exports"""

from .tabular_parser import ParseResult, TabularParser, coerce_phone_cell

__all__ = ["ParseResult", "TabularParser", "coerce_phone_cell"]
