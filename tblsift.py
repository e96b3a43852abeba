#!/usr/bin/env python3
"""
Tblsift: filter and sort a comma-delimited table from the command line.

Reads a table from a file or standard input, keeps the rows whose value in a
named column contains a substring, sorts the data rows by a named column and
writes the result back out as CSV. The first row is always the header and
always stays first.

Examples:
    tblsift.py -file people.csv -filter name -value Yama
    cat people.csv | tblsift.py -sort age -type desc:num
"""
import sys
import argparse
import os
import re
import math
import csv
import difflib
from enum import Enum
from functools import cmp_to_key
from io import StringIO
from typing import Dict, List, NamedTuple, Optional, TextIO

import pandas as pd

__version__ = "1.2.0"

Row = List[str]
Table = List[Row]


# --------------------------
# Errors
# --------------------------
class TblsiftError(ValueError):
    """Base class for every failure reported to the user."""


class MissingArgumentError(TblsiftError):
    pass


class ColumnNotFoundError(TblsiftError):
    pass


class UnsupportedSortDirectionError(TblsiftError):
    pass


class UnsupportedSortModeError(TblsiftError):
    pass


class NumericValidationError(TblsiftError):
    pass


class InputParseError(TblsiftError):
    pass


class OutputWriteError(TblsiftError):
    pass


# --------------------------
# Custom Argument Parser
# --------------------------
class CustomArgumentParser(argparse.ArgumentParser):
    def _exit_with_error(self, message: str, hint: str = ""):
        use_color = sys.stderr.isatty() and os.getenv("NO_COLOR") is None
        red, reset = ("\033[91m", "\033[0m") if use_color else ("", "")
        line = "-" * (len(message.splitlines()[0]) + 8)
        formatted_message = f"\n{line}\n{red}Error: {message}{reset}\n{line}{hint}"
        self.exit(2, formatted_message)

    def error(self, message: str):
        if 'unrecognized arguments' in message:
            unknown = message.split(':', 1)[1].split()
            flag = next((a for a in unknown if a.startswith('-')), None)
            options = [s for a in self._actions for s in a.option_strings]
            suggestion = difflib.get_close_matches(flag, options, n=1) if flag else []
            hint = f"\nDid you mean: {suggestion[0]!r}?\n" if suggestion else "\n"
            self._exit_with_error(f"Option '{flag or unknown[0]}' not recognized.", hint=hint)
        else: self._exit_with_error(message.capitalize())


# --------------------------
# Utility Functions
# --------------------------
def _print_verbose(args, message):
    """Prints verbose output if enabled."""
    if getattr(args, "verbose", False):
        sys.stderr.write(f"VERBOSE: {message}\n")


def value_at(row: Row, idx: int) -> str:
    """Returns the field at idx, or an empty string when the row is too short."""
    return row[idx] if idx < len(row) else ""


def index_by_header(header: Row) -> Dict[str, int]:
    """Maps each header name to its position. A repeated name keeps its last position."""
    index = {}
    for i, name in enumerate(header):
        index[name] = i
    return index


def resolve_column(index: Dict[str, int], name: str, role: str) -> int:
    if name in index:
        return index[name]
    suggestion = difflib.get_close_matches(name, list(index), n=1)
    hint = f" (did you mean {suggestion[0]!r}?)" if suggestion else ""
    raise ColumnNotFoundError(f"{role} column not found: {name}{hint}")


_HEX_FLOAT = re.compile(r"[+-]?0x[0-9a-f]*\.?[0-9a-f]*p[+-]?[0-9]+", re.IGNORECASE)
_INFINITY = re.compile(r"[+-]?inf(inity)?", re.IGNORECASE)


def parse_number(text: str) -> Optional[float]:
    """
    Parses a trimmed field as a float, returning None when it is not a number.

    Accepts ASCII decimals with an optional exponent, hex floats with a binary
    exponent ("0x1p-2"), inf/infinity and nan. Rejects digit-group underscores
    ("1_000") and finite spellings too large for a double ("1e400").
    """
    s = text.strip()
    if not s or "_" in s or not s.isascii():
        return None
    try:
        value = float.fromhex(s) if _HEX_FLOAT.fullmatch(s) else float(s)
    except (ValueError, OverflowError):
        return None
    if math.isinf(value) and not _INFINITY.fullmatch(s):
        return None
    return value


# --------------------------
# Sort Specification
# --------------------------
class Direction(Enum):
    ASCENDING = 1
    DESCENDING = -1
    NEUTRAL = 0


class SortMode(Enum):
    AUTO = "auto"
    NUMERIC = "num"
    STRING = "str"


class SortSpec(NamedTuple):
    direction: Direction
    mode: SortMode = SortMode.AUTO


NO_SORT = SortSpec(Direction.NEUTRAL, SortMode.AUTO)

_DIRECTIONS = {
    "": Direction.ASCENDING, "asc": Direction.ASCENDING, "lt": Direction.ASCENDING, "le": Direction.ASCENDING,
    "desc": Direction.DESCENDING, "gt": Direction.DESCENDING, "ge": Direction.DESCENDING,
}
_MODES = {
    "": SortMode.AUTO, "auto": SortMode.AUTO,
    "num": SortMode.NUMERIC, "number": SortMode.NUMERIC, "numeric": SortMode.NUMERIC,
    "str": SortMode.STRING, "string": SortMode.STRING, "text": SortMode.STRING,
}


def parse_sort_type(descriptor: str) -> SortSpec:
    """
    Parses a '<direction>[:<mode>]' descriptor such as 'asc', 'gt' or 'desc:num'.

    Matching is case-insensitive and ignores surrounding whitespace. An empty
    direction means ascending; a missing mode means auto.
    """
    trimmed = descriptor.strip().lower()
    base, mode = trimmed, SortMode.AUTO
    if ":" in trimmed:
        base, suffix = trimmed.split(":", 1)
        base = base.strip()
        mode = _MODES.get(suffix.strip())
        if mode is None:
            raise UnsupportedSortModeError(f"unsupported sort mode: {suffix}")
    direction = _DIRECTIONS.get(base)
    if direction is None:
        raise UnsupportedSortDirectionError(f"unsupported sort type: {descriptor}")
    return SortSpec(direction, mode)


# --------------------------
# Row Handlers
# --------------------------
def filter_rows(table: Table, column: str, value: str) -> Table:
    """Keeps the header plus every data row whose `column` field contains `value`."""
    if not column or not value:
        raise MissingArgumentError("both -filter and -value must be specified")
    if not table:
        return []
    idx = resolve_column(index_by_header(table[0]), column, "filter")
    kept = [list(table[0])]
    kept.extend(list(row) for row in table[1:] if value in value_at(row, idx))
    return kept


def compare_values(a: str, b: str, mode: SortMode) -> int:
    """
    Orders two fields: -1, 0 or 1.

    The numeric-or-text decision is made for each pair, not for the column.
    Unless the mode forces strings, two fields that both parse as numbers
    compare numerically; any other pair compares as text.
    """
    if mode is not SortMode.STRING:
        fa, fb = parse_number(a), parse_number(b)
        if fa is not None and fb is not None:
            return (fa > fb) - (fa < fb)
    return (a > b) - (a < b)


def validate_numeric(rows: Table, idx: int):
    for row in rows:
        v = value_at(row, idx).strip()
        if v == "":
            raise NumericValidationError("numeric sort requested but empty value found")
        if parse_number(v) is None:
            raise NumericValidationError(f"numeric sort requested but non-numeric value found: {v}")


def sort_rows(table: Table, column: str, spec: SortSpec) -> Table:
    """Stable sort of the data rows by `column`; the header stays first."""
    if len(table) <= 1 or spec.direction is Direction.NEUTRAL:
        return [list(row) for row in table]
    idx = resolve_column(index_by_header(table[0]), column, "sort")
    rows = [list(row) for row in table[1:]]
    if spec.mode is SortMode.NUMERIC:
        validate_numeric(rows, idx)

    sign = spec.direction.value

    def compare(r1, r2):
        return sign * compare_values(value_at(r1, idx), value_at(r2, idx), spec.mode)

    rows.sort(key=cmp_to_key(compare))
    return [list(table[0])] + rows


def run_pipeline(table: Table, args: argparse.Namespace) -> Table:
    """Applies the requested filter and sort to a table read from input."""
    if not table:
        return table
    if args.filter or args.value:
        table = filter_rows(table, args.filter, args.value)
        _print_verbose(args, f"Filter on '{args.filter}' kept {len(table) - 1} data row(s).")
    if args.sort and len(table) > 1:
        spec = parse_sort_type(args.type)
        _print_verbose(args, f"Sorting on '{args.sort}' ({spec.direction.name.lower()}, {spec.mode.name.lower()}).")
        table = sort_rows(table, args.sort, spec)
    return table


# --------------------------
# Argument Parser
# --------------------------
def _setup_arg_parser():
    parser = CustomArgumentParser(
        prog="tblsift",
        description="Filter and sort a comma-delimited table by named columns.",
        allow_abbrev=False,
    )
    io_opts = parser.add_argument_group("Input/Output Options")
    io_opts.add_argument("path", nargs="?", help="Input file, used when -file is not given (default: stdin).")
    io_opts.add_argument("-file", "--file", dest="file", help="Input file path (otherwise first argument or stdin).")
    io_opts.add_argument("--encoding", default="utf-8", help="Input file encoding.")
    io_opts.add_argument("-v", "--verbose", action="store_true", help="Enable verbose debug output to stderr.")
    io_opts.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    row_opts = parser.add_argument_group("Row Options")
    row_opts.add_argument("-filter", "--filter", default="", help="Column name for filtering. Requires -value.")
    row_opts.add_argument("-value", "--value", default="", help="Substring to match for filtering. Requires -filter.")
    row_opts.add_argument("-sort", "--sort", default="", help="Column name for sorting. No sorting when omitted.")
    row_opts.add_argument(
        "-type", "--type", default="asc",
        help="Sort direction: asc/desc or lt/le/gt/ge, optionally :num, :str or :auto (e.g. asc:num)."
    )
    return parser


# --------------------------
# Input / Output
# --------------------------
def read_table(path: Optional[str], encoding: str = "utf-8") -> Table:
    """Reads a CSV table from `path`, or from stdin when no path is given."""
    try:
        if path:
            with open(path, mode='r', encoding=encoding, newline='') as fh:
                content = fh.read()
        else:
            content = sys.stdin.read()
    except (OSError, UnicodeDecodeError) as e:
        raise InputParseError(f"cannot read input: {e}")

    if not content.strip():
        return []

    # Everything stays text and duplicate header names are not mangled.
    try:
        df = pd.read_csv(
            StringIO(content), sep=",", header=None, dtype=str,
            na_filter=False, skip_blank_lines=True, engine="c",
        )
    except (pd.errors.ParserError, pd.errors.EmptyDataError, ValueError) as e:
        raise InputParseError(f"cannot parse input: {e}")
    return [
        [cell if isinstance(cell, str) else "" for cell in row]
        for row in df.itertuples(index=False, name=None)
    ]


def write_table(table: Table, stream: TextIO):
    """Writes the table as CSV. Rendering happens before anything reaches `stream`."""
    buffer = StringIO()
    writer = csv.writer(buffer, delimiter=",", quotechar='"', lineterminator='\n', quoting=csv.QUOTE_MINIMAL)
    try:
        writer.writerows(table)
    except csv.Error as e:
        raise OutputWriteError(f"cannot write output: {e}")
    try:
        stream.write(buffer.getvalue())
        stream.flush()
    except BrokenPipeError:
        try:
            stream.close()
        except OSError:
            pass
    except OSError as e:
        raise OutputWriteError(f"cannot write output: {e}")


# --------------------------
# Main Execution
# --------------------------
def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the script."""
    parser = _setup_arg_parser()
    args = parser.parse_args(argv)
    path = args.file or args.path

    try:
        table = read_table(path, args.encoding)
        _print_verbose(args, f"Read {len(table)} row(s) from {path or 'stdin'}.")
        if not table:
            return 0
        table = run_pipeline(table, args)
        write_table(table, sys.stdout)
        _print_verbose(args, f"Wrote {len(table)} row(s).")
    except TblsiftError as e:
        sys.stderr.write(f"Error: {e}\n")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
