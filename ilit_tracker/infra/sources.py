"""Tabular sources: workbook, CSV and in-memory frames.

Every source yields its header row and then positional data rows; cell
meaning is decided later by the column resolver.
"""

from __future__ import annotations

import logging
import zipfile
from os import PathLike
from pathlib import Path
from typing import Any, Iterator, List, Tuple

import pandas as pd
from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException

from ilit_tracker.infra.errors import SourceReadError

__all__ = [
    "CsvTabularSource",
    "ExcelTabularSource",
    "FrameTabularSource",
    "open_source",
]

logger = logging.getLogger(__name__)

_WORKBOOK_ERRORS = (OSError, zipfile.BadZipFile, InvalidFileException, KeyError)
_CSV_ERRORS = (OSError, pd.errors.ParserError, pd.errors.EmptyDataError, UnicodeDecodeError)
_EXCEL_SUFFIXES = frozenset({".xlsx", ".xlsm"})


def _header_text(value: object) -> str:
    return "" if value is None else str(value).strip()


class ExcelTabularSource:
    """First (or named) worksheet of an ``.xlsx`` workbook.

    The workbook is opened read-only and streamed. ``data_only=True`` makes
    formula cells yield their cached results instead of formula text.
    """

    def __init__(self, path: Path | str | PathLike[str], *, sheet_name: str | None = None) -> None:
        self.path = Path(path)
        self.sheet_name = sheet_name

    def _open(self) -> Any:
        try:
            return load_workbook(self.path, read_only=True, data_only=True)
        except _WORKBOOK_ERRORS as exc:
            raise SourceReadError(path=str(self.path), message="Cannot open workbook") from exc

    def _worksheet(self, workbook: Any) -> Any:
        if self.sheet_name is None:
            return workbook.worksheets[0]
        if self.sheet_name not in workbook.sheetnames:
            raise SourceReadError(path=str(self.path), message=f"Worksheet '{self.sheet_name}' not found")
        return workbook[self.sheet_name]

    def headers(self) -> List[str]:
        workbook = self._open()
        try:
            for row in self._worksheet(workbook).iter_rows(min_row=1, max_row=1, values_only=True):
                return [_header_text(value) for value in row]
            return []
        finally:
            workbook.close()

    def rows(self) -> Iterator[Tuple[Any, ...]]:
        workbook = self._open()
        try:
            for row in self._worksheet(workbook).iter_rows(min_row=2, values_only=True):
                yield tuple(row)
        finally:
            workbook.close()


class CsvTabularSource:
    """A CSV file read in chunks; every cell arrives as text."""

    def __init__(self, path: Path | str | PathLike[str], *, chunksize: int = 1000, encoding: str = "utf-8-sig") -> None:
        self.path = Path(path)
        self.chunksize = chunksize
        self.encoding = encoding

    def headers(self) -> List[str]:
        try:
            frame = pd.read_csv(self.path, nrows=0, dtype=str, encoding=self.encoding)
        except _CSV_ERRORS as exc:
            raise SourceReadError(path=str(self.path), message="Cannot read CSV header") from exc
        return [_header_text(column) for column in frame.columns]

    def rows(self) -> Iterator[Tuple[Any, ...]]:
        try:
            reader = pd.read_csv(
                self.path,
                dtype=str,
                keep_default_na=False,
                chunksize=self.chunksize,
                encoding=self.encoding,
            )
            with reader:
                for chunk in reader:
                    yield from chunk.itertuples(index=False, name=None)
        except _CSV_ERRORS as exc:
            raise SourceReadError(path=str(self.path), message="Cannot read CSV rows") from exc


class FrameTabularSource:
    """An in-memory :class:`pandas.DataFrame`."""

    def __init__(self, frame: pd.DataFrame) -> None:
        self.frame = frame

    def headers(self) -> List[str]:
        return [_header_text(column) for column in self.frame.columns]

    def rows(self) -> Iterator[Tuple[Any, ...]]:
        return self.frame.itertuples(index=False, name=None)


def open_source(path: Path | str | PathLike[str], *, sheet_name: str | None = None) -> ExcelTabularSource | CsvTabularSource:
    """Pick the source class from the file suffix."""

    source_path = Path(path)
    if not source_path.exists():
        raise SourceReadError(path=str(source_path), message="File not found")
    suffix = source_path.suffix.lower()
    if suffix in _EXCEL_SUFFIXES:
        return ExcelTabularSource(source_path, sheet_name=sheet_name)
    if suffix == ".csv":
        return CsvTabularSource(source_path)
    logger.warning("Unsupported source type %s", source_path)
    raise SourceReadError(path=str(source_path), message="Only .xlsx, .xlsm and .csv files are supported")
