"""Spreadsheet codec: xlsx bytes <-> list of rows (first worksheet only)."""
from __future__ import annotations
from io import BytesIO
from typing import Any, List, Optional, Sequence
from zipfile import BadZipFile

from openpyxl import Workbook, load_workbook
from openpyxl.utils import get_column_letter
from openpyxl.utils.exceptions import InvalidFileException

from stockhub.errors import ValidationError

XLSX_MIME = 'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet'
ACCEPTED_EXTENSIONS = ('.xlsx', '.xlsm')
NOT_A_WORKBOOK = 'File must be an Excel workbook (.xlsx, .xlsm)'

# XML parse errors (stdlib or lxml) subclass SyntaxError
_UNREADABLE = (InvalidFileException, BadZipFile, KeyError, IndexError, OSError, SyntaxError, ValueError)


def parse(data: bytes) -> List[List[Any]]:
    """Rows of the first worksheet. Unreadable workbooks raise ValidationError."""
    if not data:
        raise ValidationError('File is empty')
    try:
        workbook = load_workbook(BytesIO(data), read_only=True, data_only=True)
    except _UNREADABLE:
        raise ValidationError(NOT_A_WORKBOOK)
    try:
        sheet = workbook.worksheets[0]
        # read-only sheets parse their XML lazily, while iterating
        return [list(row) for row in sheet.iter_rows(values_only=True)]
    except _UNREADABLE:
        raise ValidationError(NOT_A_WORKBOOK)
    finally:
        workbook.close()


def serialize(rows: Sequence[Sequence[Any]], sheet_title: str = 'Productos',
              column_widths: Optional[Sequence[int]] = None) -> bytes:
    workbook = Workbook()
    sheet = workbook.active
    sheet.title = sheet_title
    for row in rows:
        sheet.append(list(row))
    for idx, width in enumerate(column_widths or [], start=1):
        sheet.column_dimensions[get_column_letter(idx)].width = width
    out = BytesIO()
    workbook.save(out)
    return out.getvalue()


__all__ = ['parse', 'serialize', 'XLSX_MIME', 'ACCEPTED_EXTENSIONS', 'NOT_A_WORKBOOK']
