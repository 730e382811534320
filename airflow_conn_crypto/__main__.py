#!/usr/bin/env python3
#
# Copyright (c) 2022 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""Command-line interface for airflow_conn_crypto package"""


from typing import Optional, Sequence, List, Dict, TextIO, cast

import os
import sys
import argparse
import json
import logging
import yaml
import colorama # type: ignore[import]
from colorama import Fore, Style
from pygments import highlight, lexers, formatters

# NOTE: this module runs with -m; do not use relative imports
from airflow_conn_crypto import (
    FernetCipher,
    Connection,
    CollisionStrategy,
    Jsonable,
    AirflowConnCryptoError,
    AuthenticationError,
    InvalidKeyError,
    NoKeyError,
    KEY_ENV_VAR,
    PREFIX_ENV_VAR,
    generate_key,
    is_valid_key,
    extract_timestamp,
    canonical_json,
    write_export_file,
    read_import_file,
    decode_batch,
    plan_import,
    __version__ as pkg_version,
  )

logger = logging.getLogger('airflow_conn_crypto')

def is_colorizable(stream: TextIO) -> bool:
  is_a_tty = hasattr(stream, 'isatty') and stream.isatty()
  return is_a_tty

class CmdExitError(RuntimeError):
  exit_code: int

  def __init__(self, exit_code: int, msg: Optional[str]=None):
    if msg is None:
      msg = f"Command exited with return code {exit_code}"
    super().__init__(msg)
    self.exit_code = exit_code

class ArgparseExitError(CmdExitError):
  pass

class NoExitArgumentParser(argparse.ArgumentParser):
  def exit(self, status=0, message=None):
    if message:
      self._print_message(message, sys.stderr)
    raise ArgparseExitError(status, message)

def describe_error(ex: Exception) -> str:
  """Render an error for the user, keeping "fix the key" apart from "wrong key or tampered data"."""
  if isinstance(ex, InvalidKeyError):
    return f"invalid key: {ex}. A key is 32 bytes of standard or URL-safe Base64."
  if isinstance(ex, AuthenticationError):
    return f"authentication failed: {ex} The key is well-formed but wrong, or the data was altered."
  return str(ex)

class CommandHandler:
  _argv: Optional[Sequence[str]]
  _parser: argparse.ArgumentParser
  _args: argparse.Namespace
  _key: Optional[str] = None
  _config: Optional[Dict[str, Jsonable]] = None
  _colorize_stdout: bool = False
  _colorize_stderr: bool = False
  _compact: bool = False
  _raw: bool = False
  _encoding: str
  _output_file: Optional[str] = None

  def __init__(self, argv: Optional[Sequence[str]]=None):
    self._argv = argv

  def ocolor(self, codes: str) -> str:
    return codes if self._colorize_stdout else ""

  def ecolor(self, codes: str) -> str:
    return codes if self._colorize_stderr else ""

  def pretty_print(
        self,
        any_value: Jsonable,
        compact: Optional[bool]=None,
        colorize: Optional[bool]=None,
        raw: Optional[bool]=None,
      ):
    if raw is None:
      raw = self._raw
    if raw and isinstance(any_value, str):
      self.write_output(any_value)
      return
    value = any_value

    if compact is None:
      compact = self._compact
    if colorize is None:
      colorize = True

    def emit_to(f: TextIO):
      final_colorize = colorize and ((f is sys.stdout and self._colorize_stdout) or (f is sys.stderr and self._colorize_stderr))

      if compact:
        json_text = json.dumps(value, separators=(',', ':'), sort_keys=True)
      else:
        json_text = json.dumps(value, indent=2, sort_keys=True)
      if final_colorize:
        json_text = highlight(json_text, lexers.JsonLexer(), formatters.TerminalFormatter())  # pylint: disable=no-member
      else:
        json_text += '\n'
      f.write(json_text)

    output_file = self._output_file
    if output_file is None:
      emit_to(sys.stdout)
    else:
      with open(output_file, "w", encoding=self._encoding) as f:
        emit_to(f)

  def write_output(self, text: str) -> None:
    output_file = self._output_file
    if output_file is None:
      sys.stdout.write(text)
    else:
      with open(output_file, 'w', encoding=self._encoding) as f:
        f.write(text)

  def get_config(self) -> Dict[str, Jsonable]:
    if self._config is None:
      config_file: Optional[str] = self._args.config_file
      config: Dict[str, Jsonable] = {}
      if not config_file is None:
        with open(config_file, encoding='utf-8') as f:
          config_obj = yaml.safe_load(f)
        if config_obj is None:
          config_obj = {}
        if not isinstance(config_obj, dict):
          raise AirflowConnCryptoError(f"Config file {config_file} must contain a YAML mapping")
        config = config_obj
      self._config = config
    return self._config

  def get_config_str(self, name: str, env_var: Optional[str]=None) -> Optional[str]:
    value = self.get_config().get(name, None)
    if value is not None and not isinstance(value, str):
      raise AirflowConnCryptoError(f"Config property '{name}' must be a string")
    if (value is None or value == '') and not env_var is None:
      value = os.environ.get(env_var, '')
    if value == '':
      value = None
    return value

  def get_key(self) -> str:
    if self._key is None:
      key: str = self._args.key or ''
      if key == '':
        key = self.get_config_str('file_key', KEY_ENV_VAR) or ''
        if key == '':
          raise NoKeyError(f'A key must be provided with --key, in the config file, or in environment variable {KEY_ENV_VAR}')
      self._key = key
    return self._key

  def get_cipher(self) -> FernetCipher:
    return FernetCipher(self.get_key())

  def get_store_key(self) -> Optional[str]:
    store_key: Optional[str] = self._args.store_key
    if store_key is None:
      store_key = self.get_config_str('store_key')
    return store_key

  def read_value(self, value: Optional[str], what: str) -> str:
    args = self._args
    use_stdin: bool = args.use_stdin
    input_file: Optional[str] = args.input_file
    if use_stdin:
      if input_file is None:
        input_file = '/dev/stdin'
      else:
        raise AirflowConnCryptoError("Only one of --stdin and --input can be provided")
    if value is None:
      if input_file is None:
        raise AirflowConnCryptoError(f"One of {what} parameter, --stdin, or --input must be provided")
      with open(input_file, encoding=self._encoding) as f:
        value = f.read()
    else:
      if not input_file is None:
        raise AirflowConnCryptoError(f"Only one of {what} parameter, --stdin, and --input can be provided")
    return value

  def load_connections(self, input_file: str) -> List[Connection]:
    with open(input_file, encoding=self._encoding) as f:
      # YAML is a superset of JSON, so either format is accepted
      data = yaml.safe_load(f)
    if isinstance(data, dict) and isinstance(data.get('connections', None), list):
      data = data['connections']
    if not isinstance(data, list):
      raise AirflowConnCryptoError(f"{input_file} must contain a list of connections")
    return [Connection.from_dict(item) for item in data]

  def cmd_bare(self) -> int:
    print("A command is required", file=sys.stderr)
    return 1

  def cmd_version(self) -> int:
    self.pretty_print(pkg_version)
    return 0

  def cmd_generate_key(self) -> int:
    self.write_output(generate_key() + ('' if self._raw else '\n'))
    return 0

  def cmd_validate_key(self) -> int:
    key: Optional[str] = self._args.key_to_check
    if key is None:
      key = self.get_key()
    valid = is_valid_key(key)
    self.pretty_print(valid)
    return 0 if valid else 1

  def cmd_encrypt(self) -> int:
    args = self._args
    plaintext = self.read_value(args.value, 'value')
    if args.json:
      plaintext = canonical_json(json.loads(plaintext))
    cipher = self.get_cipher()
    token = cipher.encrypt(plaintext)
    self.write_output(token + ('' if self._raw else '\n'))
    return 0

  def cmd_decrypt(self) -> int:
    args = self._args
    token = self.read_value(args.token, 'token').strip()
    cipher = self.get_cipher()
    value: Jsonable
    if args.json:
      value = cipher.decrypt_jsonable(token)
    else:
      value = cipher.decrypt(token)
    if args.show_timestamp:
      value = dict(plaintext=value, timestamp=extract_timestamp(token))
    self.pretty_print(value)
    return 0

  def cmd_export(self) -> int:
    args = self._args
    prefix: Optional[str] = args.prefix
    if prefix is None:
      prefix = self.get_config_str('prefix', PREFIX_ENV_VAR)
    connections = self.load_connections(args.input_file)
    store_key = self.get_store_key()
    if not store_key is None:
      connections = [c.decrypt_stored_fields(store_key) for c in connections]
    count = write_export_file(args.output_file, connections, self.get_key(), prefix=prefix)
    print(f"{self.ecolor(Fore.GREEN)}Exported {count} connection(s) to {args.output_file}{self.ecolor(Style.RESET_ALL)}", file=sys.stderr)
    return 0

  def get_strategy(self) -> CollisionStrategy:
    strategy_s: Optional[str] = self._args.strategy
    if strategy_s is None:
      strategy_s = self.get_config_str('collision_strategy')
    if strategy_s is None:
      return CollisionStrategy.default()
    try:
      return CollisionStrategy(strategy_s)
    except ValueError as e:
      raise AirflowConnCryptoError(f"Unknown collision strategy '{strategy_s}'") from e

  def get_existing_ids(self) -> Optional[List[str]]:
    args = self._args
    existing: Optional[List[str]] = args.existing
    existing_file: Optional[str] = args.existing_file
    if existing_file is None:
      return existing
    result = list(existing or [])
    with open(existing_file, encoding=self._encoding) as f:
      result.extend(line.strip() for line in f if line.strip() != '')
    return result

  def cmd_import(self) -> int:
    args = self._args
    key = self.get_key()
    rc = 0
    connections: List[Connection]
    if args.keep_going:
      with open(args.input_file, encoding='utf-8', newline='') as f:
        report = decode_batch(f.read(), key)
      for result in report.failed:
        print(f"{self.ecolor(Fore.YELLOW)}line {result.line_number}: {describe_error(cast(Exception, result.error))}"
              f"{self.ecolor(Style.RESET_ALL)}", file=sys.stderr)
      logger.info("Import: %s", report.summary())
      connections = [cast(Connection, r.record) for r in report.succeeded]
      rc = 0 if report.ok else 1
    else:
      connections = read_import_file(args.input_file, key)
    store_key = self.get_store_key()
    if not store_key is None:
      connections = [c.encrypt_stored_fields(store_key) for c in connections]
    existing_ids = self.get_existing_ids()
    result_value: Jsonable
    if existing_ids is None and args.strategy is None:
      result_value = [c.to_dict() for c in connections]
    else:
      plan = plan_import(connections, set(existing_ids or []), self.get_strategy())
      plan.raise_if_stopped()
      result_value = dict(
          strategy=plan.strategy.value,
          insert=[c.to_dict() for c in plan.insert],
          update=[c.to_dict() for c in plan.update],
          reject=[c.conn_id for c in plan.reject],
          collisions=list(plan.collisions),
        )
    self.pretty_print(result_value)
    return rc

  def run(self) -> int:
    """Run the airflow-conn-crypto command-line tool with provided arguments

    Args:
        argv (Optional[Sequence[str]], optional):
            A list of commandline arguments (NOT including the program as argv[0]!),
            or None to use sys.argv[1:]. Defaults to None.

    Returns:
        int: The exit code that would be returned if this were run as a standalone command.
    """
    parser = NoExitArgumentParser(
        prog='airflow-conn-crypto',
        description="Export and import Airflow connections as Fernet-encrypted transport files.")


    # ======================= Main command

    self._parser = parser
    parser.add_argument('--traceback', "--tb", action='store_true', default=False,
                        help='Display detailed exception information')
    parser.add_argument('-M', '--monochrome', action='store_true', default=False,
                        help='Output to stdout/stderr in monochrome. Default is to colorize if stream is a compatible terminal')
    parser.add_argument('-c', '--compact', action='store_true', default=False,
                        help='Compact instead of pretty-printed output')
    parser.add_argument('-r', '--raw', action='store_true', default=False,
                        help='''Output raw strings directly, not json-encoded.
                                Values embedded in structured results are not affected.''')
    parser.add_argument('-o', '--output', dest="output_file", default=None,
                        help='Write output value to the specified file instead of stdout')
    parser.add_argument('--text-encoding', default='utf-8',
                        help='The encoding used for text. Default  is utf-8')
    parser.add_argument('--log-level', default='WARNING',
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
                        help='Level of diagnostic log messages written to stderr. Default is WARNING')
    parser.add_argument('-k', '--key', default=None,
                        help=f'''The file key used to encrypt/decrypt, as standard or URL-safe Base64. By default,
                                 the "file_key" property of the config file or environment variable {KEY_ENV_VAR} is used''')
    parser.add_argument('--config-file', '-C', default=None,
                        help='''A YAML document with optional "file_key", "store_key", "prefix" and
                                "collision_strategy" properties''')
    parser.set_defaults(func=self.cmd_bare)

    subparsers = parser.add_subparsers(
                        title='Commands',
                        description='Valid commands',
                        help='Additional help available with "<command-name> -h"')


    # ======================= version

    parser_version = subparsers.add_parser('version',
                            description='''Display version information. JSON-quoted string. If a raw string is desired, use -r.''')
    parser_version.set_defaults(func=self.cmd_version)

    # ======================= generate-key

    parser_generate_key = subparsers.add_parser('generate-key', description="Generate a new random key, as URL-safe Base64")
    parser_generate_key.set_defaults(func=self.cmd_generate_key)

    # ======================= validate-key

    parser_validate_key = subparsers.add_parser('validate-key',
                            description="Check that a key decodes to exactly 32 bytes. Exits with 1 if it does not.")
    parser_validate_key.add_argument('key_to_check', nargs='?', default=None,
                        help="The key to check. By default the key given by --key, the config file or the environment is checked.")
    parser_validate_key.set_defaults(func=self.cmd_validate_key)

    # ======================= encrypt

    parser_encrypt = subparsers.add_parser('encrypt', description="Encrypt a string into a Fernet token")
    parser_encrypt.add_argument('--json', '-j', action='store_true', default=False,
                        help='The provided value is JSON text to be reserialized in canonical form before encrypting.')
    parser_encrypt.add_argument('--stdin', dest="use_stdin", action='store_true', default=False,
                        help='Read the value from stdin instead of the commandline')
    parser_encrypt.add_argument('-i', '--input', dest="input_file", default=None,
                        help='Read the value from the specified file instead of the commandline')
    parser_encrypt.add_argument('value', nargs='?', default=None,
                        help="The value to be encrypted. Omit this parameter if --input or --stdin is provided.")
    parser_encrypt.set_defaults(func=self.cmd_encrypt)

    # ======================= decrypt

    parser_decrypt = subparsers.add_parser('decrypt', description="Get the plaintext value of a Fernet token")
    parser_decrypt.add_argument('--json', '-j', action='store_true', default=False,
                        help='The plaintext is interpreted as JSON which will be reformatted for readability.')
    parser_decrypt.add_argument('--show-timestamp', action='store_true', default=False,
                        help='Also output the creation time embedded in the token.')
    parser_decrypt.add_argument('--stdin', dest="use_stdin", action='store_true', default=False,
                        help='Read the token from stdin instead of the commandline')
    parser_decrypt.add_argument('-i', '--input', dest="input_file", default=None,
                        help='Read the token from the specified file instead of the commandline')
    parser_decrypt.add_argument('token', nargs='?', default=None,
                        help="The token to be decrypted. Omit this parameter if --input or --stdin is provided.")
    parser_decrypt.set_defaults(func=self.cmd_decrypt)

    # ======================= export

    parser_export = subparsers.add_parser('export', description="Encrypt a list of connections into a transport file")
    parser_export.add_argument('--prefix', '-p', default=None,
                        help=f'''A prefix of at most 10 characters added to every conn_id. By default the config file
                                 "prefix" property or environment variable {PREFIX_ENV_VAR} is used''')
    parser_export.add_argument('--store-key', default=None,
                        help='''The Airflow fernet_key of the source deployment. If provided, password and extra
                                values flagged as encrypted in the input are decrypted with it before export''')
    parser_export.add_argument('input_file',
                        help='A JSON or YAML file holding a list of connection objects')
    parser_export.add_argument('output_file',
                        help='The transport file to create or replace')
    parser_export.set_defaults(func=self.cmd_export)

    # ======================= import

    parser_import = subparsers.add_parser('import', description="Decrypt the connections in a transport file")
    parser_import.add_argument('--store-key', default=None,
                        help='''The Airflow fernet_key of the destination deployment. If provided, password and extra
                                values are encrypted with it as their flags require''')
    parser_import.add_argument('--existing', '-e', action='append', default=None,
                        help='A conn_id that already exists in the destination. May be repeated.')
    parser_import.add_argument('--existing-file', default=None,
                        help='A file listing existing conn_ids, one per line')
    parser_import.add_argument('--strategy', '-s', default=None,
                        choices=[s.value for s in CollisionStrategy],
                        help='''How to treat conn_ids that already exist. If this or --existing is given, the
                                import plan is output instead of the list of connections. Default is "stop".''')
    parser_import.add_argument('--keep-going', action='store_true', default=False,
                        help='Report rows that cannot be decrypted and continue with the rest, exiting with 1')
    parser_import.add_argument('input_file',
                        help='The transport file to read')
    parser_import.set_defaults(func=self.cmd_import)

    # =========================================================

    try:
      args = parser.parse_args(self._argv)
    except ArgparseExitError as ex:
      return ex.exit_code
    traceback: bool = args.traceback
    logging.basicConfig(level=getattr(logging, args.log_level), format='%(levelname)s %(name)s: %(message)s', stream=sys.stderr)
    try:
      self._args = args
      self._raw = args.raw
      self._compact = args.compact
      self._output_file = args.output_file
      self._encoding = args.text_encoding
      monochrome: bool = args.monochrome
      if not monochrome:
        self._colorize_stdout = is_colorizable(sys.stdout)
        self._colorize_stderr = is_colorizable(sys.stderr)
        if self._colorize_stdout or self._colorize_stderr:
          colorama.init(wrap=False)
          if self._colorize_stdout:
            new_stream = colorama.AnsiToWin32(sys.stdout)
            if new_stream.should_wrap():
              sys.stdout = new_stream
          if self._colorize_stderr:
            new_stream = colorama.AnsiToWin32(sys.stderr)
            if new_stream.should_wrap():
              sys.stderr = new_stream
      rc = args.func()
    except Exception as ex:
      if isinstance(ex, CmdExitError):
        rc = ex.exit_code
      else:
        rc = 1
      if rc != 0:
        if traceback:
          raise

        print(f"{self.ecolor(Fore.RED)}airflow-conn-crypto: error: {describe_error(ex)}{self.ecolor(Style.RESET_ALL)}", file=sys.stderr)
    return rc

def run(argv: Optional[Sequence[str]]=None) -> int:
  try:
    rc = CommandHandler(argv).run()
  except CmdExitError as ex:
    rc = ex.exit_code
  return rc

# allow running with "python3 -m", or as a standalone script
if __name__ == "__main__":
  sys.exit(run())
