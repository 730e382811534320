#!/usr/bin/env python3
#
# Copyright (c) 2022 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""Constants defined by this package"""

FERNET_VERSION = 0x80
"""Version byte that begins every token. Only this version is accepted"""

KEY_SIZE_BYTES = 32
"""Size of a raw key in bytes. The first half signs, the second half encrypts"""

SIGNING_KEY_SIZE_BYTES = 16
"""Size of the HMAC-SHA256 subkey taken from the start of the key"""

ENCRYPTION_KEY_SIZE_BYTES = KEY_SIZE_BYTES - SIGNING_KEY_SIZE_BYTES
"""Size of the AES-128 subkey taken from the end of the key"""

VERSION_SIZE_BYTES = 1

TIMESTAMP_SIZE_BYTES = 8
"""Size of the big-endian encryption timestamp"""

IV_SIZE_BYTES = 16
"""Size of the random CBC initialization vector generated for each token"""

BLOCK_SIZE_BYTES = 16
"""AES block size; the ciphertext region is always a multiple of this"""

HMAC_SIZE_BYTES = 32
"""Size of the HMAC-SHA256 tag that ends every token"""

HEADER_SIZE_BYTES = VERSION_SIZE_BYTES + TIMESTAMP_SIZE_BYTES + IV_SIZE_BYTES
"""Bytes preceding the ciphertext region"""

MIN_TOKEN_SIZE_BYTES = HEADER_SIZE_BYTES + BLOCK_SIZE_BYTES + HMAC_SIZE_BYTES
"""Smallest well-formed token: header, one cipher block and the tag (73 bytes)"""

CSV_HEADERS = ("conn_id", "encrypted_connection")
"""Column names of a transport file, in order"""

CSV_HEADER_LINE = ",".join(CSV_HEADERS)
"""First line of every transport file"""

MAX_PREFIX_LENGTH = 10
"""Longest conn_id prefix accepted on export"""

KEY_ENV_VAR = "AIRFLOW_CONN_FILE_KEY"
"""Environment variable consulted by the command-line tool for the file key"""

PREFIX_ENV_VAR = "AIRFLOW_CONN_PREFIX"
"""Environment variable consulted by the command-line tool for the export prefix"""

SECRET_SERVICE_PREFIX = "airflow.connection"
"""Namespace of secret store keys holding per-profile credentials"""
