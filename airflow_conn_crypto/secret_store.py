#
# Copyright (c) 2022 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""Key-value storage for the secrets that feed the codec

A connection profile's database password and its Airflow fernet_key are not kept with the
profile; they live in a SecretStore under keys derived from the profile ID. Any object with
get/set/delete works: an OS credential store, the encrypted file store below, or a test double.
"""

from typing import Dict, Optional, Protocol, runtime_checkable
import logging
import os

import yaml

from .constants import SECRET_SERVICE_PREFIX
from .exceptions import AirflowConnCryptoError, DecodingError
from .fernet_cipher import FernetCipher
from .util import atomic_write_text

logger = logging.getLogger(__name__)

@runtime_checkable
class SecretStore(Protocol):
  """Protocol implemented by secret stores."""

  def get(self, key: str) -> Optional[str]:
    """Return the value stored under key, or None."""

  def set(self, key: str, value: str) -> None:
    """Store value under key, replacing any previous value."""

  def delete(self, key: str) -> None:
    """Remove key. Removing a missing key is not an error."""

class MemorySecretStore:
  """A SecretStore that keeps values in a dict."""

  def __init__(self, initial: Optional[Dict[str, str]]=None):
    self._values: Dict[str, str] = dict(initial or {})

  def get(self, key: str) -> Optional[str]:
    return self._values.get(key)

  def set(self, key: str, value: str) -> None:
    self._values[key] = value

  def delete(self, key: str) -> None:
    self._values.pop(key, None)

  def __len__(self) -> int:
    return len(self._values)

class EncryptedFileSecretStore:
  """A SecretStore backed by a YAML file whose values are Fernet tokens.

  The file maps each key to the encryption of its value under the store's cipher. Keys are
  visible; values are not. Every change rewrites the file atomically with mode 0600.
  """

  _path: str
  _cipher: FernetCipher

  def __init__(self, path: str, cipher: FernetCipher):
    self._path = path
    self._cipher = cipher

  @property
  def path(self) -> str:
    return self._path

  def _load(self) -> Dict[str, str]:
    if not os.path.exists(self._path):
      return {}
    with open(self._path, encoding='utf-8') as f:
      try:
        data = yaml.safe_load(f)
      except yaml.YAMLError as e:
        raise DecodingError(f"Secret store {self._path} is not valid YAML") from e
    if data is None:
      return {}
    if not isinstance(data, dict) or not all(isinstance(k, str) and isinstance(v, str) for k, v in data.items()):
      raise DecodingError(f"Secret store {self._path} must be a mapping of strings to strings")
    return data

  def _save(self, data: Dict[str, str]) -> None:
    atomic_write_text(self._path, yaml.safe_dump(data, default_flow_style=False, sort_keys=True), mode=0o600)

  def get(self, key: str) -> Optional[str]:
    token = self._load().get(key)
    if token is None:
      return None
    return self._cipher.decrypt(token)

  def set(self, key: str, value: str) -> None:
    """Store value under key. Setting an empty value deletes the key."""
    if value == '':
      self.delete(key)
      return
    data = self._load()
    data[key] = self._cipher.encrypt(value)
    self._save(data)
    logger.debug("Stored secret %r in %s", key, self._path)

  def delete(self, key: str) -> None:
    data = self._load()
    if key in data:
      del data[key]
      self._save(data)
      logger.debug("Deleted secret %r from %s", key, self._path)

class ProfileSecrets:
  """The password and fernet_key of one connection profile, as held in a SecretStore."""

  def __init__(self, store: SecretStore, profile_id: str):
    if profile_id == '':
      raise AirflowConnCryptoError("Profile ID must not be empty")
    self._store = store
    self._profile_id = profile_id

  @property
  def password_key(self) -> str:
    return f"{SECRET_SERVICE_PREFIX}.{self._profile_id}.password"

  @property
  def fernet_key_key(self) -> str:
    return f"{SECRET_SERVICE_PREFIX}.{self._profile_id}.fernetKey"

  def _put(self, key: str, value: Optional[str]) -> None:
    if value:
      self._store.set(key, value)
    else:
      self._store.delete(key)

  @property
  def password(self) -> str:
    """The database password, or '' if none is stored. Assigning '' or None deletes it."""
    return self._store.get(self.password_key) or ''

  @password.setter
  def password(self, value: Optional[str]) -> None:
    self._put(self.password_key, value)

  @property
  def fernet_key(self) -> str:
    """The Airflow fernet_key, or '' if none is stored. Assigning '' or None deletes it."""
    return self._store.get(self.fernet_key_key) or ''

  @fernet_key.setter
  def fernet_key(self, value: Optional[str]) -> None:
    self._put(self.fernet_key_key, value)

  def clear(self) -> None:
    self._store.delete(self.password_key)
    self._store.delete(self.fernet_key_key)
