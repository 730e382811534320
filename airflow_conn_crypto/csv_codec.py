#
# Copyright (c) 2022 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""Reading and writing of encrypted connection transport files

A transport file is UTF-8 text of the form:

    conn_id,encrypted_connection
    <conn_id>,<token>
    ...

where each token is the Fernet encryption, under a file key shared out of band, of the
connection's canonical JSON. A field is wrapped in double quotes, with internal quotes doubled,
iff it contains a comma, a double quote or a line break.
"""

from typing import Iterable, Iterator, List, Optional, Tuple
import logging

from .connection import Connection, validate_prefix
from .constants import CSV_HEADERS, CSV_HEADER_LINE
from .exceptions import (
    AuthenticationError,
    DecodingError,
    EmptyInputError,
    EncodingError,
    ExportError,
    FileReadError,
    MalformedHeaderError,
    MalformedRowError,
    RowDecodingError,
    RowDecryptionError,
  )
from .util import KeyLike, atomic_write_text, decode_key, decrypt_string, encrypt_string

logger = logging.getLogger(__name__)

_NEEDS_QUOTING = (',', '"', '\n', '\r')

def escape_field(value: str) -> str:
  """Quote a field for a transport row if it contains a comma, a double quote or a line break."""
  if any(c in value for c in _NEEDS_QUOTING):
    return '"' + value.replace('"', '""') + '"'
  return value

def parse_line(line: str) -> List[str]:
  """Split one logical row into fields.

  Quote state is tracked character by character: a quote opens or closes quoted mode, a doubled
  quote inside quoted mode is one literal quote, and a comma separates fields only outside quotes.
  Whitespace outside the quotes at either end of a field is trimmed.

  Returns:
      List[str]: The unquoted fields. An empty line yields a single empty field.
  """
  fields: List[str] = []
  # (char, was_inside_quotes) so trimming never eats quoted whitespace
  current: List[Tuple[str, bool]] = []
  inside_quotes = False
  i = 0
  n = len(line)
  while i < n:
    c = line[i]
    if c == '"':
      if inside_quotes and i + 1 < n and line[i + 1] == '"':
        current.append(('"', True))
        i += 2
        continue
      inside_quotes = not inside_quotes
    elif c == ',' and not inside_quotes:
      fields.append(_finish_field(current))
      current = []
    else:
      current.append((c, inside_quotes))
    i += 1
  fields.append(_finish_field(current))
  return fields

def _finish_field(chars: List[Tuple[str, bool]]) -> str:
  start = 0
  end = len(chars)
  while start < end and not chars[start][1] and chars[start][0].isspace():
    start += 1
  while end > start and not chars[end - 1][1] and chars[end - 1][0].isspace():
    end -= 1
  return ''.join(c for c, _ in chars[start:end])

def split_records(text: str) -> Iterator[Tuple[int, str]]:
  """Split transport file text into logical rows.

  CR, LF and CRLF all end a row, except inside a quoted field, where they are kept as part of
  the field.

  Yields:
      Tuple[int, str]: The 1-based physical line number on which each row starts, and the row text
  """
  inside_quotes = False
  line_number = 1
  start_line = 1
  current: List[str] = []
  i = 0
  n = len(text)
  while i < n:
    c = text[i]
    if c == '"':
      inside_quotes = not inside_quotes
      current.append(c)
    elif c in '\r\n':
      if c == '\r' and i + 1 < n and text[i + 1] == '\n':
        c = '\r\n'
        i += 1
      line_number += 1
      if inside_quotes:
        current.append(c)
      else:
        yield start_line, ''.join(current)
        current = []
        start_line = line_number
    else:
      current.append(c)
    i += 1
  if current:
    yield start_line, ''.join(current)

def iter_data_rows(text: str) -> Iterator[Tuple[int, str]]:
  """Check the header of transport file text, then yield its non-blank data rows.

  Raises:
      EmptyInputError: the text is empty
      MalformedHeaderError: the first line is not 'conn_id,encrypted_connection'

  Yields:
      Tuple[int, str]: Line number and text of each data row
  """
  text = text.lstrip('\ufeff')
  if text.strip() == '':
    raise EmptyInputError("File is empty or contains no data rows")
  rows = split_records(text)
  _, header = next(rows)
  if header.strip().lower() != CSV_HEADER_LINE.lower():
    raise MalformedHeaderError(header.strip())
  for line_number, row in rows:
    if row.strip() != '':
      yield line_number, row

def encode_row(record: Connection, key: KeyLike, prefix: Optional[str]=None) -> str:
  """Encrypt a connection into one transport row.

  Args:
      record (Connection): The connection, with password and extra in plaintext
      key (KeyLike): The file key
      prefix (Optional[str], optional): A prefix of at most 10 characters prepended to conn_id.
                                        Defaults to None.

  Raises:
      PrefixTooLongError: prefix is longer than 10 characters
      InvalidKeyError: key is structurally invalid
      EncodingError: the record fails validation, or cannot be serialized or encoded

  Returns:
      str: The row, without a line terminator
  """
  record.validate()
  record = record.with_prefix(prefix)
  token = encrypt_string(record.to_json(), key)
  return f"{escape_field(record.conn_id)},{escape_field(token)}"

def decode_row(row: str, key: KeyLike, line_number: Optional[int]=None) -> Connection:
  """Decrypt one transport row into a connection.

  Args:
      row (str): The row text, without a line terminator
      key (KeyLike): The file key
      line_number (Optional[int], optional): Line of the row in its file, for error messages

  Raises:
      MalformedRowError: The row does not have exactly two fields
      InvalidKeyError: key is structurally invalid
      RowDecryptionError: The token failed authentication (wrong key or tampered file)
      RowDecodingError: The token is malformed or does not decrypt to a connection

  Returns:
      Connection: The decoded record
  """
  fields = parse_line(row)
  if len(fields) != len(CSV_HEADERS):
    where = "" if line_number is None else f" at line {line_number}"
    raise MalformedRowError(
        f"Invalid row format{where}. Expected {len(CSV_HEADERS)} fields but found {len(fields)}",
        line_number=line_number,
        field_count=len(fields),
      )
  conn_id, token = fields
  try:
    plaintext = decrypt_string(token, key)
  except AuthenticationError as e:
    raise RowDecryptionError(conn_id, line_number) from e
  except (DecodingError, EmptyInputError) as e:
    raise RowDecodingError(conn_id, line_number, reason=str(e)) from e
  try:
    record = Connection.from_json(plaintext)
  except DecodingError as e:
    raise RowDecodingError(conn_id, line_number, reason=str(e)) from e
  if record.conn_id != conn_id:
    logger.warning("Row conn_id %r does not match encrypted conn_id %r", conn_id, record.conn_id)
  return record

def export_connections(records: Iterable[Connection], key: KeyLike, prefix: Optional[str]=None) -> str:
  """Build the complete text of a transport file.

  The prefix and key are checked before any record is processed, and the first record that
  cannot be encrypted aborts the whole export.

  Raises:
      PrefixTooLongError: prefix is longer than 10 characters
      InvalidKeyError: key is structurally invalid
      EmptyInputError: there are no records to export
      ExportError: a record could not be serialized or encrypted; conn_id names it

  Returns:
      str: Header plus one row per record, joined with '\\n'
  """
  prefix = validate_prefix(prefix)
  raw_key = decode_key(key)
  lines = [CSV_HEADER_LINE]
  for record in records:
    try:
      lines.append(encode_row(record, raw_key, prefix))
    except (EncodingError, EmptyInputError) as e:
      raise ExportError(record.conn_id, f"Failed to export connection '{record.conn_id}': {e}") from e
    logger.debug("Encrypted connection %r", record.conn_id)
  if len(lines) == 1:
    raise EmptyInputError("No connections to export")
  return "\n".join(lines)

def import_connections(text: str, key: KeyLike) -> List[Connection]:
  """Decrypt every connection in the text of a transport file.

  All or nothing: the header is checked before any row, and the first bad row fails the import.

  Raises:
      InvalidKeyError: key is structurally invalid
      EmptyInputError: the file is empty or contains no data rows
      MalformedHeaderError: the first line is not 'conn_id,encrypted_connection'
      MalformedRowError: a row does not have exactly two fields
      RowDecryptionError: a row failed authentication
      RowDecodingError: a row is malformed or does not decrypt to a connection

  Returns:
      List[Connection]: The records in file order
  """
  raw_key = decode_key(key)
  connections: List[Connection] = []
  for line_number, row in iter_data_rows(text):
    connections.append(decode_row(row, raw_key, line_number))
    logger.debug("Decrypted connection at line %d", line_number)
  if len(connections) == 0:
    raise EmptyInputError("No valid connections found in file")
  return connections

def write_export_file(path: str, records: Iterable[Connection], key: KeyLike, prefix: Optional[str]=None) -> int:
  """Export connections to a transport file, replacing it atomically.

  Nothing is written unless every record encrypts successfully.

  Returns:
      int: Number of connections written
  """
  records = list(records)
  text = export_connections(records, key, prefix=prefix)
  atomic_write_text(path, text)
  count = len(records)
  logger.info("Exported %d connection(s) to %s", count, path)
  return count

def read_import_file(path: str, key: KeyLike) -> List[Connection]:
  """Read and decrypt every connection in a transport file.

  Raises:
      FileReadError: The file cannot be opened or is not UTF-8
      (and everything import_connections() raises)
  """
  try:
    with open(path, encoding='utf-8', newline='') as f:
      text = f.read()
  except (OSError, UnicodeDecodeError) as e:
    raise FileReadError(f"Failed to read file {path}: {e}") from e
  connections = import_connections(text, key)
  logger.info("Imported %d connection(s) from %s", len(connections), path)
  return connections
