#
# Copyright (c) 2022 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""Exceptions defined by this package"""

from typing import Optional, Sequence

class AirflowConnCryptoError(Exception):
  """Base class for all error exceptions defined by this package."""
  #pass

class InvalidKeyError(AirflowConnCryptoError):
  """Exception indicating that a key does not decode to exactly 32 bytes."""
  #pass

class EncodingError(AirflowConnCryptoError):
  """Exception indicating that a value could not be converted to UTF-8 or JSON before encryption."""
  #pass

class EmptyInputError(AirflowConnCryptoError):
  """Exception indicating that there was nothing to encrypt, decrypt or import."""
  #pass

class AuthenticationError(AirflowConnCryptoError):
  """Exception indicating that a token's HMAC did not match. The key is wrong or the token was altered."""
  #pass

class DecodingError(AirflowConnCryptoError):
  """Exception indicating a structurally invalid token, or authenticated content that is not valid
     padding, UTF-8 or JSON."""
  #pass

class MalformedRowError(AirflowConnCryptoError):
  """Exception indicating a transport file row that does not split into exactly two fields."""
  line_number: Optional[int]
  field_count: Optional[int]

  def __init__(self, msg: str, line_number: Optional[int]=None, field_count: Optional[int]=None):
    super().__init__(msg)
    self.line_number = line_number
    self.field_count = field_count

class MalformedHeaderError(MalformedRowError):
  """Exception indicating that a transport file does not begin with the expected header line."""
  found: str

  def __init__(self, found: str):
    super().__init__(f"Invalid header. Expected 'conn_id,encrypted_connection' but found '{found}'", line_number=1)
    self.found = found

class RowDecryptionError(AuthenticationError):
  """Exception indicating that one row of a transport file failed authentication."""
  conn_id: str
  line_number: Optional[int]

  def __init__(self, conn_id: str, line_number: Optional[int]=None):
    where = "" if line_number is None else f" at line {line_number}"
    super().__init__(f"Failed to decrypt connection '{conn_id}'{where}. Check the file key.")
    self.conn_id = conn_id
    self.line_number = line_number

class RowDecodingError(DecodingError):
  """Exception indicating that one row of a transport file holds a malformed token, or a token that decrypts to
     something that is not a connection."""
  conn_id: str
  line_number: Optional[int]

  def __init__(self, conn_id: str, line_number: Optional[int]=None, reason: Optional[str]=None):
    where = "" if line_number is None else f" at line {line_number}"
    msg = f"Failed to decode connection '{conn_id}'{where}"
    if reason:
      msg += f": {reason}"
    super().__init__(msg)
    self.conn_id = conn_id
    self.line_number = line_number

class PrefixTooLongError(AirflowConnCryptoError):
  """Exception indicating a conn_id prefix longer than the permitted maximum."""
  #pass

class ExportError(AirflowConnCryptoError):
  """Exception indicating that a connection could not be serialized or encrypted during export."""
  conn_id: str

  def __init__(self, conn_id: str, msg: Optional[str]=None):
    if msg is None:
      msg = f"Failed to export connection '{conn_id}'"
    super().__init__(msg)
    self.conn_id = conn_id

class FieldDecryptionError(AirflowConnCryptoError):
  """Exception indicating that an encrypted password or extra field read from the store could not be decrypted."""
  conn_id: str
  field: str

  def __init__(self, conn_id: str, field: str):
    super().__init__(f"Failed to decrypt '{field}' for connection '{conn_id}'. The key may be incorrect.")
    self.conn_id = conn_id
    self.field = field

class CollisionError(AirflowConnCryptoError):
  """Exception indicating that an import was stopped because connection IDs already exist."""
  conn_ids: Sequence[str]

  def __init__(self, conn_ids: Sequence[str]):
    ids = ", ".join(conn_ids)
    super().__init__(f"The following connection IDs already exist: {ids}. No connections were imported.")
    self.conn_ids = tuple(conn_ids)

class FileReadError(AirflowConnCryptoError):
  """Exception indicating that a transport file could not be read."""
  #pass

class NoKeyError(AirflowConnCryptoError):
  """Exception indicating failure because a key was not provided."""
  #pass
