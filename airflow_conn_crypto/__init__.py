# Copyright (c) 2022 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
Package airflow_conn_crypto provides a command-line tool as well as a runtime API for moving Apache Airflow
connections between deployments in Fernet-encrypted transport files. It can also be used for general
Fernet-compatible encryption/decryption of secret strings.
"""

from .version import __version__

from .constants import (
    FERNET_VERSION,
    KEY_SIZE_BYTES,
    IV_SIZE_BYTES,
    HMAC_SIZE_BYTES,
    MIN_TOKEN_SIZE_BYTES,
    CSV_HEADER_LINE,
    MAX_PREFIX_LENGTH,
    KEY_ENV_VAR,
    PREFIX_ENV_VAR,
  )

from .util import (
    generate_key,
    decode_key,
    is_valid_key,
    encrypt_string,
    decrypt_string,
    extract_timestamp,
  )

from .fernet_cipher import FernetCipher, canonical_json
from .connection import Connection, validate_prefix
from .csv_codec import (
    escape_field,
    parse_line,
    encode_row,
    decode_row,
    export_connections,
    import_connections,
    write_export_file,
    read_import_file,
  )
from .batch import RecordResult, BatchReport, encode_batch, decode_batch
from .collision import CollisionStrategy, ImportPlan, plan_import
from .secret_store import SecretStore, MemorySecretStore, EncryptedFileSecretStore, ProfileSecrets
from .internal_types import Jsonable
from .exceptions import (
    AirflowConnCryptoError,
    InvalidKeyError,
    NoKeyError,
    EncodingError,
    EmptyInputError,
    AuthenticationError,
    DecodingError,
    MalformedRowError,
    MalformedHeaderError,
    RowDecryptionError,
    RowDecodingError,
    PrefixTooLongError,
    ExportError,
    FieldDecryptionError,
    CollisionError,
    FileReadError,
  )
