#!/usr/bin/env python3
#
# Copyright (c) 2022 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""Fernet-compatible encryption/decryption of strings"""

from typing import Optional, Tuple, Union

from Cryptodome.Cipher import AES
from Cryptodome.Hash import HMAC, SHA256
from Cryptodome.Random import get_random_bytes
from Cryptodome.Util.Padding import pad, unpad
from base64 import b64decode, urlsafe_b64encode
import binascii
import os
import struct
import tempfile
import time

from .exceptions import (
    AuthenticationError,
    DecodingError,
    EmptyInputError,
    EncodingError,
    InvalidKeyError,
  )

from .constants import (
    FERNET_VERSION,
    KEY_SIZE_BYTES,
    SIGNING_KEY_SIZE_BYTES,
    TIMESTAMP_SIZE_BYTES,
    IV_SIZE_BYTES,
    BLOCK_SIZE_BYTES,
    HMAC_SIZE_BYTES,
    HEADER_SIZE_BYTES,
    MIN_TOKEN_SIZE_BYTES,
  )

KeyLike = Union[str, bytes]
"""A key as a Base64 string in either alphabet, or as 32 raw bytes"""

def normalize_b64(text: str) -> str:
  """Convert Base64 text in either the standard or URL-safe alphabet to padded standard Base64.

  Surrounding whitespace is removed, '-' and '_' are mapped to '+' and '/', and missing
  '=' padding is restored.

  Args:
      text (str): Base64 text using '+/' or '-_', with or without padding

  Returns:
      str: Equivalent standard-alphabet Base64 text with padding
  """
  result = text.strip().replace('-', '+').replace('_', '/')
  result = result.rstrip('=')
  result += '=' * (-len(result) % 4)
  return result

def _b64decode(text: str) -> bytes:
  # validate=True rejects characters outside the alphabet instead of silently dropping them
  return b64decode(normalize_b64(text), validate=True)

def generate_key() -> str:
  """Generate a cryptographically random key.

  Returns:
      str: 32 random bytes as URL-safe Base64, the form Airflow and Python's cryptography package use
  """
  return urlsafe_b64encode(get_random_bytes(KEY_SIZE_BYTES)).decode('ascii')

def generate_iv() -> bytes:
  """Generate a cryptographically random CBC initialization vector.

  Returns:
      bytes: 16 random bytes
  """
  return get_random_bytes(IV_SIZE_BYTES)

def decode_key(key: KeyLike) -> bytes:
  """Decode a key to its 32 raw bytes.

  Args:
      key (KeyLike): A Base64 key in either alphabet, or the raw 32-byte key itself

  Raises:
      InvalidKeyError: The key does not decode to exactly 32 bytes

  Returns:
      bytes: The raw 32-byte key
  """
  if isinstance(key, (bytes, bytearray)):
    if len(key) == KEY_SIZE_BYTES:
      return bytes(key)
    try:
      key = bytes(key).decode('ascii')
    except UnicodeDecodeError as e:
      raise InvalidKeyError(f"Key must be {KEY_SIZE_BYTES} raw bytes or Base64 text") from e
  if not isinstance(key, str):
    raise InvalidKeyError(f"Key must be a string or bytes, not {type(key).__name__}")
  try:
    raw_key = _b64decode(key)
  except (binascii.Error, ValueError) as e:
    raise InvalidKeyError("Key is not valid Base64") from e
  if len(raw_key) != KEY_SIZE_BYTES:
    raise InvalidKeyError(f"Wrong key size, expected {KEY_SIZE_BYTES} bytes, got {len(raw_key)}")
  return raw_key

def is_valid_key(key: KeyLike) -> bool:
  """Check that a key decodes to exactly 32 bytes. No cryptographic operation is performed.

  Args:
      key (KeyLike): The key to check

  Returns:
      bool: True if the key is structurally valid
  """
  try:
    decode_key(key)
  except InvalidKeyError:
    return False
  return True

def split_key(raw_key: bytes) -> Tuple[bytes, bytes]:
  """Split a raw key into its (signing, encryption) halves."""
  assert len(raw_key) == KEY_SIZE_BYTES
  return raw_key[:SIGNING_KEY_SIZE_BYTES], raw_key[SIGNING_KEY_SIZE_BYTES:]

def _sign(signing_key: bytes, data: bytes) -> HMAC.HMAC:
  hmac = HMAC.new(signing_key, digestmod=SHA256)
  hmac.update(data)
  return hmac

def encrypt_string(
      plaintext: str,
      key: KeyLike,
      iv: Optional[bytes]=None,
      timestamp: Optional[int]=None,
    ) -> str:
  """Encrypt a string into a Fernet token.

  The token is the URL-safe Base64 encoding of:

    0x80 + timestamp (8 bytes, big-endian) + iv (16 bytes) + aes_128_cbc(pkcs7(plaintext)) + hmac_sha256 (32 bytes)

  Args:
      plaintext (str): A non-empty plaintext string to be encrypted
      key (KeyLike): A Base64 key in either alphabet, or 32 raw bytes
      iv (Optional[bytes], optional): A 16-byte initialization vector. If None, a random IV is
                                      generated. Only fix this for reproducible test vectors.
                                      Defaults to None.
      timestamp (Optional[int], optional): Seconds since the epoch to embed in the token. If None,
                                           the current time is used. Defaults to None.

  Raises:
      EmptyInputError: plaintext is empty; there is nothing to encrypt
      InvalidKeyError: key does not decode to 32 bytes
      EncodingError: plaintext cannot be encoded as UTF-8

  Returns:
      str: A token which may be decrypted with decrypt_string(). Every call yields a different
           token for the same plaintext and key.
  """
  assert isinstance(plaintext, str)
  if plaintext == '':
    raise EmptyInputError("Nothing to encrypt: plaintext is empty")
  raw_key = decode_key(key)
  try:
    bin_plaintext = plaintext.encode('utf-8')
  except UnicodeEncodeError as e:
    raise EncodingError("Plaintext cannot be encoded as UTF-8") from e
  if iv is None:
    iv = generate_iv()
  elif len(iv) != IV_SIZE_BYTES:
    raise EncodingError(f"IV must be {IV_SIZE_BYTES} bytes in length")
  if timestamp is None:
    timestamp = int(time.time())
  signing_key, encryption_key = split_key(raw_key)
  cipher = AES.new(encryption_key, AES.MODE_CBC, iv=iv)
  ciphertext_data = cipher.encrypt(pad(bin_plaintext, BLOCK_SIZE_BYTES, style='pkcs7'))
  body = bytes([FERNET_VERSION]) + struct.pack('>Q', timestamp) + iv + ciphertext_data
  tag = _sign(signing_key, body).digest()
  assert len(tag) == HMAC_SIZE_BYTES
  return urlsafe_b64encode(body + tag).decode('ascii')

def _decode_token(token: str) -> bytes:
  try:
    data = _b64decode(token)
  except (binascii.Error, ValueError) as e:
    raise DecodingError("Badly formed token: not valid Base64") from e
  if len(data) < MIN_TOKEN_SIZE_BYTES:
    raise DecodingError(f"Token too short: expected at least {MIN_TOKEN_SIZE_BYTES} bytes, got {len(data)}")
  if (len(data) - HEADER_SIZE_BYTES - HMAC_SIZE_BYTES) % BLOCK_SIZE_BYTES != 0:
    raise DecodingError("Badly formed token: ciphertext is not a whole number of blocks")
  if data[0] != FERNET_VERSION:
    raise DecodingError(f"Unsupported token version: 0x{data[0]:02x}")
  return data

def decrypt_string(token: str, key: KeyLike) -> str:
  """Decrypt a Fernet token previously produced by encrypt_string() or any compatible implementation.

  The HMAC is verified before any decryption is attempted. The embedded timestamp is not
  checked: tokens never expire.

  Args:
      token (str): A token in either Base64 alphabet
      key (KeyLike): The key the token was encrypted with

  Raises:
      EmptyInputError: token is empty
      InvalidKeyError: key does not decode to 32 bytes
      DecodingError: token is not Base64, is too short, or has the wrong version byte
      AuthenticationError: the HMAC does not match; wrong key or tampered token
      DecodingError: the authenticated content has invalid padding or is not UTF-8

  Returns:
      str: The original plaintext
  """
  assert isinstance(token, str)
  if token.strip() == '':
    raise EmptyInputError("Nothing to decrypt: token is empty")
  raw_key = decode_key(key)
  data = _decode_token(token)
  signing_key, encryption_key = split_key(raw_key)
  body = data[:-HMAC_SIZE_BYTES]
  tag = data[-HMAC_SIZE_BYTES:]
  try:
    _sign(signing_key, body).verify(tag)
  except ValueError as e:
    raise AuthenticationError("Token signature does not match; the key is incorrect or the token was altered") from e
  iv = body[HEADER_SIZE_BYTES - IV_SIZE_BYTES:HEADER_SIZE_BYTES]
  ciphertext_data = body[HEADER_SIZE_BYTES:]
  cipher = AES.new(encryption_key, AES.MODE_CBC, iv=iv)
  try:
    bin_plaintext = unpad(cipher.decrypt(ciphertext_data), BLOCK_SIZE_BYTES, style='pkcs7')
  except ValueError as e:
    raise DecodingError("Decrypted token has invalid padding") from e
  try:
    plaintext = bin_plaintext.decode('utf-8')
  except UnicodeDecodeError as e:
    raise DecodingError("Decrypted token is not valid UTF-8") from e
  return plaintext

def extract_timestamp(token: str) -> int:
  """Return the encryption time embedded in a token, without authenticating it.

  The value is informational only; do not base security decisions on it.

  Raises:
      DecodingError: The token is structurally invalid

  Returns:
      int: Seconds since the epoch at which the token was created
  """
  data = _decode_token(token)
  (timestamp,) = struct.unpack('>Q', data[1:1 + TIMESTAMP_SIZE_BYTES])
  return timestamp

def atomic_write_text(path: str, text: str, encoding: str='utf-8', mode: Optional[int]=None) -> None:
  """Replace the contents of a file in one step.

  The text is written to a temporary file in the same directory, which is then renamed over path.
  Readers see either the old contents or the new contents, never a partial file.

  Args:
      path (str): The file to create or replace
      text (str): The complete new contents
      encoding (str, optional): Text encoding. Defaults to 'utf-8'.
      mode (Optional[int], optional): Permission bits for the new file, e.g. 0o600. If None,
                                      the default for new files is used. Defaults to None.
  """
  dirname = os.path.dirname(os.path.abspath(path))
  fd, tmp_path = tempfile.mkstemp(dir=dirname, prefix='.tmp-', suffix=os.path.basename(path))
  try:
    with os.fdopen(fd, 'w', encoding=encoding, newline='') as f:
      f.write(text)
      f.flush()
      os.fsync(f.fileno())
    if mode is not None:
      os.chmod(tmp_path, mode)
    os.replace(tmp_path, path)
  except BaseException:
    try:
      os.unlink(tmp_path)
    except FileNotFoundError:
      pass
    raise
