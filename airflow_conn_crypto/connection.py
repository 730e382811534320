#
# Copyright (c) 2022 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""Airflow connection records and their canonical JSON form"""

from typing import Any, Dict, Mapping, Optional, Tuple
from dataclasses import dataclass, field, fields, replace
import json
import logging

from .internal_types import JsonableDict
from .exceptions import (
    AuthenticationError,
    DecodingError,
    EncodingError,
    FieldDecryptionError,
    PrefixTooLongError,
  )
from .constants import MAX_PREFIX_LENGTH
from .fernet_cipher import FernetCipher, canonical_json
from .util import KeyLike

logger = logging.getLogger(__name__)

OPTIONAL_STR_FIELDS: Tuple[str, ...] = ("conn_type", "description", "host", "schema", "login", "password", "extra")
"""Optional free-text columns of Airflow's connection table"""

BOOL_FIELDS: Tuple[str, ...] = ("is_encrypted", "is_extra_encrypted")
"""Required flags telling whether password/extra hold ciphertext in the store"""

def validate_prefix(prefix: Optional[str]) -> str:
  """Check a conn_id prefix and normalize None to ''.

  Raises:
      PrefixTooLongError: prefix is longer than 10 characters
  """
  if prefix is None:
    return ''
  if len(prefix) > MAX_PREFIX_LENGTH:
    raise PrefixTooLongError(f"Connection ID prefix must be {MAX_PREFIX_LENGTH} characters or less, got {len(prefix)}")
  return prefix

def _schema_problem(data: Mapping[str, Any]) -> Optional[str]:
  """Return a description of the first schema violation in a connection mapping, or None."""
  conn_id = data.get("conn_id")
  if not isinstance(conn_id, str) or conn_id == '':
    return "Connection is missing a non-empty string 'conn_id'"
  for name in OPTIONAL_STR_FIELDS:
    value = data.get(name)
    if value is not None and not isinstance(value, str):
      return f"Field '{name}' of connection '{conn_id}' must be a string or null"
  port = data.get("port")
  if port is not None and (isinstance(port, bool) or not isinstance(port, int)):
    return f"Field 'port' of connection '{conn_id}' must be an integer or null"
  for name in BOOL_FIELDS:
    if name not in data:
      return f"Connection '{conn_id}' is missing required field '{name}'"
    if not isinstance(data[name], bool):
      return f"Field '{name}' of connection '{conn_id}' must be a boolean"
  return None

@dataclass(frozen=True)
class Connection:
  """A single row of Airflow's public.connection table.

  Instances are immutable; renaming or re-encrypting returns a new record.
  """

  conn_id: str
  conn_type: Optional[str] = None
  description: Optional[str] = None
  host: Optional[str] = None
  schema: Optional[str] = None
  login: Optional[str] = None
  password: Optional[str] = field(default=None, repr=False)
  port: Optional[int] = None
  is_encrypted: bool = True
  is_extra_encrypted: bool = True
  extra: Optional[str] = field(default=None, repr=False)

  def display_name(self) -> str:
    """A one-line label such as "aws_default (aws) - AWS Production Account"."""
    parts = [self.conn_id]
    if self.conn_type:
      parts.append(f"({self.conn_type})")
    if self.description:
      parts.append(f"- {self.description}")
    return " ".join(parts)

  def has_sensitive_data(self) -> bool:
    """True if the password or extra field holds anything."""
    return bool(self.password) or bool(self.extra)

  def with_conn_id(self, conn_id: str) -> 'Connection':
    return replace(self, conn_id=conn_id)

  def with_prefix(self, prefix: Optional[str]) -> 'Connection':
    """Return a copy whose conn_id is prefixed.

    Raises:
        PrefixTooLongError: prefix is longer than 10 characters
    """
    prefix = validate_prefix(prefix)
    if prefix == '':
      return self
    return self.with_conn_id(prefix + self.conn_id)

  def to_dict(self) -> JsonableDict:
    return {f.name: getattr(self, f.name) for f in fields(self)}

  def to_json(self) -> str:
    """Serialize to canonical JSON: every field present, keys sorted, compact separators."""
    return canonical_json(self.to_dict())

  @classmethod
  def from_dict(cls, data: Mapping[str, Any]) -> 'Connection':
    """Build a record from a decoded JSON object. Unknown keys are ignored.

    Raises:
        DecodingError: a required field is missing or a field has the wrong type
    """
    if not isinstance(data, Mapping):
      raise DecodingError(f"Connection must be a JSON object, not {type(data).__name__}")
    problem = _schema_problem(data)
    if problem is not None:
      raise DecodingError(problem)
    kwargs: Dict[str, Any] = {name: data.get(name) for name in ("conn_id", "port") + OPTIONAL_STR_FIELDS + BOOL_FIELDS}
    return cls(**kwargs)

  def validate(self) -> None:
    """Check that the record would survive a trip through from_dict().

    Raises:
        EncodingError: conn_id is empty, or a field has the wrong type
    """
    problem = _schema_problem(self.to_dict())
    if problem is not None:
      raise EncodingError(problem)

  @classmethod
  def from_json(cls, text: str) -> 'Connection':
    """Parse canonical (or any) JSON text into a record.

    Raises:
        DecodingError: text is not JSON or does not describe a connection
    """
    try:
      data = json.loads(text)
    except json.JSONDecodeError as e:
      raise DecodingError(f"Invalid JSON: {e}") from e
    return cls.from_dict(data)

  def decrypt_stored_fields(self, key: KeyLike) -> 'Connection':
    """Return a copy with password and extra decrypted, as read from a store that encrypts them.

    Only fields whose flag is set and whose value is non-empty are decrypted. Flags are kept, so
    encrypt_stored_fields() restores the stored form.

    Args:
        key (KeyLike): The store's key (Airflow's fernet_key)

    Raises:
        InvalidKeyError: key is structurally invalid
        FieldDecryptionError: a flagged field could not be authenticated or decoded
    """
    cipher = FernetCipher(key)
    password = self.password
    extra = self.extra
    if self.is_encrypted and password:
      password = self._decrypt_field(cipher, "password", password)
    if self.is_extra_encrypted and extra:
      extra = self._decrypt_field(cipher, "extra", extra)
    return replace(self, password=password, extra=extra)

  def encrypt_stored_fields(self, key: KeyLike) -> 'Connection':
    """Return a copy with password and extra encrypted for writing to a store, according to the flags.

    Raises:
        InvalidKeyError: key is structurally invalid
        EncodingError: a field cannot be encoded as UTF-8
    """
    cipher = FernetCipher(key)
    password = self.password
    extra = self.extra
    if self.is_encrypted and password:
      password = cipher.encrypt(password)
    if self.is_extra_encrypted and extra:
      extra = cipher.encrypt(extra)
    return replace(self, password=password, extra=extra)

  def _decrypt_field(self, cipher: FernetCipher, name: str, value: str) -> str:
    try:
      return cipher.decrypt(value)
    except (AuthenticationError, DecodingError) as e:
      logger.warning("Could not decrypt %s of connection %r", name, self.conn_id)
      raise FieldDecryptionError(self.conn_id, name) from e
