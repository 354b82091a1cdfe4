"""
Import pipeline: order export files -> validated candidates -> OrderStore.

Supports the two formats marketplaces export order lists in: CSV and Excel
(.xlsx). The pipeline runs in three steps:

1. load_order_file()        read the first sheet as text with pandas
2. extract_candidates()     map columns, validate rows, drop in-file duplicates
3. import_candidates()      reconcile each candidate against the store

suggest_column_mapping() auto-detects columns from common Shopee/marketplace
headers so most files import without manual mapping.
"""

import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Union

import pandas as pd

from exceptions import DuplicateInBatchError, ValidationError
from logger import get_logger, set_import_batch_context
from models import (
    DESCRIPTIVE_FIELDS,
    ImportSummary,
    OrderCandidate,
    RowError,
    RowErrorKind,
)

logger = get_logger(__name__)

CSV_EXTENSIONS = ('.csv',)
EXCEL_EXTENSIONS = ('.xlsx',)

# Header aliases per candidate field, matched case-insensitively in this order
COLUMN_ALIASES: Dict[str, List[str]] = {
    'tracking_number': ['tracking_number', 'tracking_no', 'no_resi', 'resi', 'awb',
                        'no. resi', 'nomor resi'],
    'order_id': ['order_sn', 'order_id', 'orderid', 'no_pesanan', 'no. pesanan'],
    'variation_name': ['variation_name', 'nama variasi', 'variasi', 'variation'],
    'receiver_name': ['receiver_name', 'nama penerima', 'penerima', 'recipient'],
    'buyer_user_name': ['buyer_user_name', 'username (pembeli)', 'username pembeli',
                        'buyer_username'],
    'jumlah': ['jumlah', 'quantity', 'qty'],
    'shipping_method': ['shipping_method', 'opsi pengiriman', 'kurir', 'courier',
                        'shipping_option'],
    'order_creation_date': ['order_creation_date', 'waktu pesanan dibuat',
                            'order_create_time', 'created_time', 'order_date'],
}

# Header row is row 1, so the first data row is row 2
FIRST_DATA_ROW = 2


@dataclass
class ExtractionResult:
    """
    Candidates extracted from a file, plus rows that were rejected.

    Attributes:
        candidates: Valid rows in file order, first occurrence of each tracking number
        errors: Rejected rows (empty tracking number, in-file duplicate)
        row_numbers: Spreadsheet row number of each kept tracking number
    """
    candidates: List[OrderCandidate] = field(default_factory=list)
    errors: List[RowError] = field(default_factory=list)
    row_numbers: Dict[str, int] = field(default_factory=dict)


def load_order_file(file_path: Union[str, Path]) -> pd.DataFrame:
    """
    Load an order export into a DataFrame of strings.

    Blank cells become '' and header names are stripped.

    Args:
        file_path: Path to a .csv or .xlsx file

    Returns:
        DataFrame with one row per order line

    Raises:
        ValidationError: If the format is unsupported, the file cannot be
                         read, or it contains no data rows
    """
    path = Path(file_path)
    suffix = path.suffix.lower()
    logger.info(f"Loading order file: {path}")

    if suffix not in CSV_EXTENSIONS + EXCEL_EXTENSIONS:
        raise ValidationError(
            f"Unsupported file format '{suffix}'. Use CSV or XLSX."
        )

    try:
        if suffix in CSV_EXTENSIONS:
            df = pd.read_csv(path, dtype=str, keep_default_na=False, skip_blank_lines=True)
        else:
            df = pd.read_excel(path, dtype=str).fillna('')
    except Exception as e:
        # pandas raises a wide range of parser/IO errors depending on the engine
        logger.error(f"Failed to read order file: {e}")
        raise ValidationError(f"Could not read the file: {e}") from e

    if df.empty:
        logger.error("Order file is empty")
        raise ValidationError("The file is empty or contains no data.")

    df.columns = [str(c).strip() for c in df.columns]
    logger.debug(f"Loaded {len(df)} rows, {len(df.columns)} columns")
    return df


def suggest_column_mapping(headers: Iterable[str]) -> Dict[str, Optional[str]]:
    """
    Guess which column holds each candidate field.

    Args:
        headers: Column headers as they appear in the file

    Returns:
        Mapping of field name -> original header, None when not found

    Example:
        >>> suggest_column_mapping(['No. Pesanan', 'No. Resi', 'Jumlah'])
        {'tracking_number': 'No. Resi', 'order_id': 'No. Pesanan', 'jumlah': 'Jumlah', ...}
    """
    headers = [str(h) for h in headers]
    lookup: Dict[str, str] = {}
    for header in headers:
        lookup.setdefault(header.strip().lower(), header)

    mapping: Dict[str, Optional[str]] = {}
    for field_name, aliases in COLUMN_ALIASES.items():
        mapping[field_name] = next(
            (lookup[alias] for alias in aliases if alias in lookup), None
        )

    found = {k: v for k, v in mapping.items() if v}
    logger.debug(f"Suggested column mapping: {found}")
    return mapping


def _check_not_seen(seen: Dict[str, int], tracking_number: str, row: int):
    if tracking_number in seen:
        raise DuplicateInBatchError(tracking_number, row, first_row=seen[tracking_number])


def extract_candidates(df: pd.DataFrame, column_mapping: Mapping[str, Optional[str]]) -> ExtractionResult:
    """
    Turn file rows into validated candidates.

    Rows without a tracking number are rejected. When a tracking number occurs
    more than once, the first row wins and every later row is reported as an
    in-file duplicate; rows are never merged.

    Args:
        df: Output of load_order_file()
        column_mapping: Field name -> column header; 'tracking_number' is required,
                        other fields are optional and may map to None

    Returns:
        ExtractionResult with candidates and rejected rows

    Raises:
        ValidationError: If the tracking column is not mapped, or a mapped
                         column does not exist in the file
    """
    tracking_column = column_mapping.get('tracking_number')
    if not tracking_column:
        raise ValidationError("Select the tracking number column first.")

    field_columns = {
        name: column_mapping.get(name)
        for name in ('tracking_number',) + DESCRIPTIVE_FIELDS
        if column_mapping.get(name)
    }
    missing = [col for col in field_columns.values() if col not in df.columns]
    if missing:
        logger.error(f"Mapped columns not in file: {missing}")
        raise ValidationError(f"The file is missing mapped columns: {', '.join(missing)}")

    result = ExtractionResult()
    seen: Dict[str, int] = {}

    for index, record in enumerate(df.to_dict('records')):
        row_number = index + FIRST_DATA_ROW
        values = {name: record.get(column) for name, column in field_columns.items()}

        try:
            candidate = OrderCandidate(**values)
            _check_not_seen(seen, candidate.tracking_number, row_number)
        except ValidationError as e:
            result.errors.append(RowError(
                tracking_number=None,
                reason=str(e),
                kind=RowErrorKind.VALIDATION,
                row=row_number,
            ))
            continue
        except DuplicateInBatchError as e:
            result.errors.append(RowError(
                tracking_number=e.tracking_number,
                reason=str(e),
                kind=RowErrorKind.DUPLICATE_IN_BATCH,
                row=e.row,
            ))
            continue

        seen[candidate.tracking_number] = row_number
        result.candidates.append(candidate)

    result.row_numbers = seen
    logger.info(
        f"Extracted {len(result.candidates)} candidate(s), rejected {len(result.errors)} row(s)"
    )
    return result


def import_candidates(store, candidates: Iterable[OrderCandidate],
                      row_numbers: Optional[Mapping[str, int]] = None) -> ImportSummary:
    """
    Reconcile candidates against the store, one at a time in input order.

    A storage failure on one row is recorded and the import continues with
    the next row, so the summary accounts for every candidate.

    Args:
        store: OrderStore to import into
        candidates: Validated candidates
        row_numbers: Optional tracking number -> file row, used in error reports

    Returns:
        ImportSummary with inserted/restored counts, duplicates and row errors
    """
    row_numbers = row_numbers or {}
    summary = ImportSummary()

    set_import_batch_context(uuid.uuid4().hex[:12])
    try:
        for candidate in candidates:
            result = store.insert_or_update_from_import(candidate)
            summary.record(result, row=row_numbers.get(candidate.tracking_number))
            if result.error:
                logger.error(f"Import failed for {candidate.tracking_number}: {result.error}")

        logger.info(
            f"Import finished: {summary.inserted_count} inserted, "
            f"{summary.restored_count} restored, {len(summary.duplicates)} duplicate(s), "
            f"{len(summary.errors)} error(s)"
        )
    finally:
        set_import_batch_context(None)

    return summary


def import_file(store, file_path: Union[str, Path],
                column_mapping: Optional[Mapping[str, Optional[str]]] = None) -> ImportSummary:
    """
    Load, extract and import an order file in one call.

    Without column_mapping the columns are auto-detected. Rows rejected during
    extraction are reported in the summary errors ahead of storage errors.

    Raises:
        ValidationError: If the file cannot be loaded or no tracking column is found
    """
    df = load_order_file(file_path)

    if column_mapping is None:
        column_mapping = suggest_column_mapping(df.columns)
        if not column_mapping.get('tracking_number'):
            raise ValidationError(
                "Could not find a tracking number column. Select it manually."
            )

    extraction = extract_candidates(df, column_mapping)
    if not extraction.candidates:
        logger.warning("No valid rows to import")

    summary = import_candidates(store, extraction.candidates, extraction.row_numbers)
    summary.errors = extraction.errors + summary.errors
    return summary
