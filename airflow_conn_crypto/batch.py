#
# Copyright (c) 2022 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""Per-record results for export and import batches

export_connections() and import_connections() stop at the first failure. The functions here
process every record independently and report the outcome of each, so a caller can show progress
or decide for itself whether to drop failed records and continue.
"""

from typing import Iterable, List, Optional
from dataclasses import dataclass
import logging

from .connection import Connection, validate_prefix
from .constants import CSV_HEADER_LINE
from .csv_codec import decode_row, encode_row, iter_data_rows
from .exceptions import (
    AirflowConnCryptoError,
    EmptyInputError,
  )
from .util import KeyLike, decode_key

logger = logging.getLogger(__name__)

@dataclass(frozen=True)
class RecordResult:
  """Outcome of encoding or decoding a single connection."""

  conn_id: Optional[str]
  line_number: Optional[int] = None
  record: Optional[Connection] = None
  row: Optional[str] = None
  error: Optional[AirflowConnCryptoError] = None

  @property
  def ok(self) -> bool:
    return self.error is None

@dataclass(frozen=True)
class BatchReport:
  """The results of one batch, in input order."""

  results: List[RecordResult]

  @property
  def succeeded(self) -> List[RecordResult]:
    return [r for r in self.results if r.ok]

  @property
  def failed(self) -> List[RecordResult]:
    return [r for r in self.results if not r.ok]

  @property
  def ok(self) -> bool:
    return len(self.results) > 0 and all(r.ok for r in self.results)

  def first_error(self) -> Optional[RecordResult]:
    for r in self.results:
      if not r.ok:
        return r
    return None

  def summary(self) -> str:
    return f"{len(self.succeeded)} succeeded, {len(self.failed)} failed"

  def to_text(self) -> str:
    """Header plus the rows of all successful results, as a transport file.

    Raises:
        EmptyInputError: no record succeeded
    """
    rows = [r.row for r in self.results if r.ok and r.row is not None]
    if len(rows) == 0:
      raise EmptyInputError("No connections to export")
    return "\n".join([CSV_HEADER_LINE] + rows)

def encode_batch(records: Iterable[Connection], key: KeyLike, prefix: Optional[str]=None) -> BatchReport:
  """Encrypt each connection into a row, recording failures instead of raising them.

  Raises:
      PrefixTooLongError: prefix is longer than 10 characters
      InvalidKeyError: key is structurally invalid
  """
  prefix = validate_prefix(prefix)
  raw_key = decode_key(key)
  results: List[RecordResult] = []
  for record in records:
    conn_id = prefix + record.conn_id
    try:
      row = encode_row(record, raw_key, prefix)
    except AirflowConnCryptoError as e:
      logger.warning("Could not encrypt connection %r: %s", conn_id, e)
      results.append(RecordResult(conn_id=conn_id, record=record, error=e))
      continue
    results.append(RecordResult(conn_id=conn_id, record=record.with_prefix(prefix), row=row))
  return BatchReport(results)

def decode_batch(text: str, key: KeyLike) -> BatchReport:
  """Decrypt each row of a transport file, recording failures instead of raising them.

  Problems with the file as a whole still raise.

  Raises:
      InvalidKeyError: key is structurally invalid
      EmptyInputError: the file is empty or contains no data rows
      MalformedHeaderError: the first line is not the expected header
  """
  raw_key = decode_key(key)
  results: List[RecordResult] = []
  for line_number, row in iter_data_rows(text):
    try:
      record = decode_row(row, raw_key, line_number)
    except AirflowConnCryptoError as e:
      logger.warning("Could not decode line %d: %s", line_number, e)
      results.append(RecordResult(conn_id=getattr(e, 'conn_id', None), line_number=line_number, row=row, error=e))
      continue
    results.append(RecordResult(conn_id=record.conn_id, line_number=line_number, record=record, row=row))
  if len(results) == 0:
    raise EmptyInputError("No valid connections found in file")
  return BatchReport(results)
