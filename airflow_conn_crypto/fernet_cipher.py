#!/usr/bin/env python3
#
# Copyright (c) 2022 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""Fernet-compatible encrypter/decrypter bound to a single key"""

from typing import Optional
from base64 import urlsafe_b64encode
import json
import uuid

from .internal_types import Jsonable
from .exceptions import DecodingError, EncodingError
from .constants import (
    FERNET_VERSION,
    KEY_SIZE_BYTES,
    IV_SIZE_BYTES,
    HMAC_SIZE_BYTES,
    MIN_TOKEN_SIZE_BYTES,
  )
from .util import (
    KeyLike,
    generate_key,
    decode_key,
    encrypt_string,
    decrypt_string,
  )

def canonical_json(obj: Jsonable) -> str:
  """Serialize a JSON-able value with sorted keys and no insignificant whitespace.

  Logically identical values always serialize to identical text.
  """
  try:
    return json.dumps(obj, sort_keys=True, separators=(',', ':'), ensure_ascii=False)
  except (TypeError, ValueError) as e:
    raise EncodingError(f"Value cannot be serialized as JSON: {e}") from e

class FernetCipher:
  """An encrypter/decrypter compatible with Python's cryptography.fernet and with Airflow

  Class FernetCipher holds one validated 32-byte key and produces/consumes Fernet tokens with it.
  This is the same scheme Airflow uses for the password and extra columns of its connection table
  (keyed by the deployment's fernet_key), and the scheme used to protect each row of an exported
  connections file (keyed by a separate file key shared out of band with the importer).

  The key is split positionally: the first 16 bytes are the HMAC-SHA256 signing key and the last
  16 bytes are the AES-128-CBC encryption key. Each token is:

      0x80 | timestamp (8) | iv (16) | ciphertext (n*16) | hmac (32)

  encoded as URL-safe Base64. Decryption accepts either Base64 alphabet and verifies the HMAC before
  decrypting, so a wrong key or a tampered token fails with AuthenticationError and never yields
  garbage plaintext.

  The timestamp is written but never enforced on decryption. Tokens do not expire; a deployment that
  needs a time-to-live must check extract_timestamp() itself.
  """

  # ==========
  # The following parameters are fixed by the Fernet format, and cannot be changed without breaking compatibility
  VERSION = FERNET_VERSION
  """Version byte at the start of every token"""

  KEY_SIZE_BYTES = KEY_SIZE_BYTES
  """Number of bytes in the raw key"""

  IV_SIZE_BYTES = IV_SIZE_BYTES
  """Number of random bytes used for the initialization vector of each token"""

  HMAC_SIZE_BYTES = HMAC_SIZE_BYTES
  """Size of the HMAC-SHA256 tag appended to each token"""

  MIN_TOKEN_SIZE_BYTES = MIN_TOKEN_SIZE_BYTES
  """Size of the shortest possible token"""

  # ===========

  _key: bytes
  """Raw 32-byte key"""

  def __init__(self, key: KeyLike):
    """Create an encrypter/decrypter for a key.

    Args:
        key (KeyLike): A Base64 key in standard or URL-safe alphabet, or the 32 raw key bytes.

    Raises:
        InvalidKeyError: The key does not decode to exactly 32 bytes
    """
    self._key = decode_key(key)

  @classmethod
  def generate(cls) -> 'FernetCipher':
    """Create a cipher with a new random key. Retrieve the key with b64_key to share it."""
    return cls(generate_key())

  @property
  def key(self) -> bytes:
    """The raw 32-byte key"""
    return self._key

  @property
  def b64_key(self) -> str:
    """The key as URL-safe Base64, suitable for Airflow's fernet_key setting"""
    return urlsafe_b64encode(self._key).decode('ascii')

  def encrypt(self, plaintext: str, iv: Optional[bytes]=None, timestamp: Optional[int]=None) -> str:
    """Encrypt a non-empty plaintext string into a token.

    Args:
        plaintext (str):   An unencrypted, non-empty string.
        iv (Optional[bytes], optional):
                           A 16-byte IV to force, for reproducible test vectors only.
                           If None, a random IV will be generated. Defaults to None.
        timestamp (Optional[int], optional):
                           Seconds since the epoch to embed. If None, the current time is used.

    Raises:
        EmptyInputError: plaintext is empty
        EncodingError: plaintext cannot be encoded as UTF-8

    Returns:
        str: The token, as URL-safe Base64
    """
    return encrypt_string(plaintext, self._key, iv=iv, timestamp=timestamp)

  def encrypt_jsonable(self, obj: Jsonable, iv: Optional[bytes]=None) -> str:
    """Encrypt a JSON-able value, serialized in canonical form (sorted keys, compact separators).

    Raises:
        EncodingError: obj cannot be serialized as JSON
    """
    return self.encrypt(canonical_json(obj), iv=iv)

  def decrypt(self, token: str) -> str:
    """Decrypt a token into a plaintext string.

    Args:
        token (str):  A token in standard or URL-safe Base64.

    Raises:
        EmptyInputError: token is empty
        DecodingError: token is malformed, or its content is not valid padding/UTF-8
        AuthenticationError: token was not encrypted with this key, or was altered

    Returns:
        str: The plaintext as it was provided to encrypt()
    """
    return decrypt_string(token, self._key)

  def decrypt_jsonable(self, token: str) -> Jsonable:
    """Decrypt a token and deserialize its plaintext as JSON.

    Raises:
        DecodingError: the plaintext is not valid JSON (in addition to the errors of decrypt())
    """
    plaintext = self.decrypt(token)
    try:
      result: Jsonable = json.loads(plaintext)
    except json.JSONDecodeError as e:
      raise DecodingError(f"Decrypted plaintext is not valid JSON: {e}") from e
    return result

  def self_test(self) -> bool:
    """Round-trip a random marker string through encrypt() and decrypt().

    Returns:
        bool: True if the marker came back unchanged
    """
    marker = f"test_encryption_{uuid.uuid4()}"
    return self.decrypt(self.encrypt(marker)) == marker
