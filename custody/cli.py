#!/usr/bin/env python3
"""
Custody Ledger CLI

Command-line access to the custody codecs, configuration and the
scenario simulator.

Usage:
    custody <command> [subcommand] [options]

Commands:
    record       Encode and decode custody records
    instruction  Build and describe instruction payloads
    simulate     Run a scenario file against the in-memory host
    config       Configuration management

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import argparse
import json
import sys
from enum import Enum
from typing import Any, List, Optional

import yaml

from custody import __version__
from custody.codec import CustodyRecord, InstructionCodec, decode_record, encode_record
from custody.config import ConfigError, get_config, get_config_manager
from custody.hardening import CustodyError, parse_identity
from custody.observability import LedgerLayer, configure_logging, get_logger
from custody.scenario import ScenarioError, load_scenario, run_scenario

logger = get_logger("cli", LedgerLayer.CLI)


class OutputFormat(Enum):
    """Output format options."""
    JSON = "json"
    YAML = "yaml"
    TEXT = "text"


class CLIError(Exception):
    """CLI error with exit code."""
    def __init__(self, message: str, exit_code: int = 1):
        super().__init__(message)
        self.exit_code = exit_code


def format_output(data: Any, fmt: OutputFormat = OutputFormat.JSON) -> str:
    """Format data for output."""
    if fmt == OutputFormat.JSON:
        return json.dumps(data, indent=2, default=str)
    elif fmt == OutputFormat.YAML:
        return yaml.dump(data, default_flow_style=False)
    elif isinstance(data, dict):
        return "\n".join(f"{k}: {v}" for k, v in data.items())
    return str(data)


def _parse_hex(value: str) -> bytes:
    text = value.strip()
    if text.startswith("0x"):
        text = text[2:]
    try:
        return bytes.fromhex(text)
    except ValueError:
        raise CLIError(f"not a hex string: {value}") from None


class CustodyCLI:
    """Main CLI application."""

    def __init__(self):
        self.parser = argparse.ArgumentParser(
            prog="custody",
            description="Custody ledger processor tooling",
            formatter_class=argparse.RawDescriptionHelpFormatter,
        )
        self.parser.add_argument(
            "--version", "-V",
            action="version",
            version=f"custody {__version__}",
        )
        self.parser.add_argument(
            "--format", "-f",
            choices=["json", "yaml", "text"],
            default="json",
            help="Output format (default: json)",
        )
        self.parser.add_argument(
            "--quiet", "-q",
            action="store_true",
            help="Suppress error output",
        )
        self.parser.add_argument(
            "--config", "-c",
            help="Configuration file to load before running the command",
        )

        self.subparsers = self.parser.add_subparsers(dest="command", help="Commands")
        self._exit_code = 0
        self._register_commands()

    def _register_commands(self) -> None:
        """Register all command groups."""
        self._register_record_commands()
        self._register_instruction_commands()
        self._register_simulate_command()
        self._register_config_commands()

    def _register_record_commands(self) -> None:
        record = self.subparsers.add_parser("record", help="Custody record codec")
        record_sub = record.add_subparsers(dest="subcommand")

        encode = record_sub.add_parser("encode", help="Encode a custody record")
        encode.add_argument("--owner", "-o", required=True, help="Owner identity (32-byte hex)")
        encode.add_argument("--locked", "-l", type=int, default=0, help="Locked funds")

        decode = record_sub.add_parser("decode", help="Decode a 40-byte custody record")
        decode.add_argument("data", help="Record bytes as hex")

    def _register_instruction_commands(self) -> None:
        instruction = self.subparsers.add_parser("instruction", help="Instruction payloads")
        instruction_sub = instruction.add_subparsers(dest="subcommand")

        lock = instruction_sub.add_parser("lock", help="Build a LOCK payload")
        lock.add_argument("amount", type=int, help="Amount to lock")

        unlock = instruction_sub.add_parser("unlock", help="Build an UNLOCK payload")
        unlock.add_argument("--amount", "-a", type=int, help="Release amount")
        unlock.add_argument("--beneficiary", "-b", help="Beneficiary identity (32-byte hex)")

        instruction_sub.add_parser("check", help="Build a CHECK payload")

        describe = instruction_sub.add_parser("describe", help="Decode an instruction payload")
        describe.add_argument("data", help="Payload bytes as hex")

    def _register_simulate_command(self) -> None:
        simulate = self.subparsers.add_parser("simulate", help="Run a scenario file")
        simulate.add_argument("scenario", help="Scenario YAML file")

    def _register_config_commands(self) -> None:
        """Register config subcommands."""
        config = self.subparsers.add_parser("config", help="Configuration management")
        config_sub = config.add_subparsers(dest="subcommand")

        # config get
        get = config_sub.add_parser("get", help="Get config value")
        get.add_argument("path", help="Config path (e.g., processor.program_id)")

        # config set
        set_cmd = config_sub.add_parser("set", help="Set config value")
        set_cmd.add_argument("path", help="Config path")
        set_cmd.add_argument("value", help="New value")

        # config show
        config_sub.add_parser("show", help="Show all config")

        # config validate
        config_sub.add_parser("validate", help="Validate config")

        # config schema
        config_sub.add_parser("schema", help="Export config schema")

    def run(self, args: Optional[List[str]] = None) -> int:
        """Run the CLI."""
        parsed = self.parser.parse_args(args)

        if not parsed.command:
            self.parser.print_help()
            return 0

        try:
            if parsed.config:
                get_config_manager().load_from_file(parsed.config)
            self._configure_logging()

            fmt = OutputFormat(parsed.format)
            result = self._dispatch(parsed)

            if result is not None:
                print(format_output(result, fmt))

            return self._exit_code

        except CustodyError as e:
            return self._fail(parsed, e.code, e.message, 1)

        except ScenarioError as e:
            return self._fail(parsed, "scenario", "; ".join(e.errors), 1)

        except ConfigError as e:
            return self._fail(parsed, "config", str(e), 1)

        except CLIError as e:
            return self._fail(parsed, "cli", str(e), e.exit_code)

        except Exception as e:
            logger.error(f"Command failed: {e}", error_code="internal", exc_info=True)
            return self._fail(parsed, "internal", str(e), 1)

    @staticmethod
    def _fail(parsed: argparse.Namespace, code: str, message: str, exit_code: int) -> int:
        if not parsed.quiet:
            print(f"Error: [{code}] {message}", file=sys.stderr)
        return exit_code

    @staticmethod
    def _configure_logging() -> None:
        observability = get_config().observability
        configure_logging(
            level=observability.log_level.get(),
            fmt=observability.log_format.get(),
        )

    def _dispatch(self, args: argparse.Namespace) -> Any:
        """Dispatch command to handler."""
        cmd = args.command
        subcmd = getattr(args, "subcommand", None)

        handler_name = f"_handle_{cmd}_{subcmd}" if subcmd else f"_handle_{cmd}"
        handler = getattr(self, handler_name, None)

        if handler is None:
            raise CLIError(f"Unknown command: {cmd} {subcmd or ''}".strip())

        return handler(args)

    # Record handlers
    def _handle_record_encode(self, args: argparse.Namespace) -> Any:
        record = CustodyRecord(owner=parse_identity(args.owner, "owner"), locked_funds=args.locked)
        return {"hex": encode_record(record).hex(), **record.to_dict()}

    def _handle_record_decode(self, args: argparse.Namespace) -> Any:
        return decode_record(_parse_hex(args.data)).to_dict()

    # Instruction handlers
    def _handle_instruction_lock(self, args: argparse.Namespace) -> Any:
        return self._describe(InstructionCodec.lock(args.amount))

    def _handle_instruction_unlock(self, args: argparse.Namespace) -> Any:
        beneficiary = parse_identity(args.beneficiary, "beneficiary") if args.beneficiary else None
        return self._describe(InstructionCodec.unlock(args.amount, beneficiary))

    def _handle_instruction_check(self, args: argparse.Namespace) -> Any:
        return self._describe(InstructionCodec.check())

    def _handle_instruction_describe(self, args: argparse.Namespace) -> Any:
        return self._describe(_parse_hex(args.data))

    @staticmethod
    def _describe(payload: bytes) -> Any:
        return {"hex": payload.hex(), **InstructionCodec.describe(payload)}

    # Simulation
    def _handle_simulate(self, args: argparse.Namespace) -> Any:
        result = run_scenario(load_scenario(args.scenario))
        if not result.passed:
            self._exit_code = 1
        return result.to_dict()

    # Config handlers
    def _handle_config_get(self, args: argparse.Namespace) -> Any:
        mgr = get_config_manager()
        return {"path": args.path, "value": mgr.get(args.path)}

    def _handle_config_set(self, args: argparse.Namespace) -> Any:
        mgr = get_config_manager()
        mgr.set(args.path, args.value)
        return {"path": args.path, "value": mgr.get(args.path), "status": "updated"}

    def _handle_config_show(self, args: argparse.Namespace) -> Any:
        return get_config_manager().config.to_dict()

    def _handle_config_validate(self, args: argparse.Namespace) -> Any:
        errors = get_config_manager().validate()
        if errors:
            self._exit_code = 1
        return {"valid": len(errors) == 0, "errors": errors}

    def _handle_config_schema(self, args: argparse.Namespace) -> Any:
        return get_config_manager().export_schema()


def main() -> int:
    """CLI entry point."""
    cli = CustodyCLI()
    return cli.run()


if __name__ == "__main__":
    sys.exit(main())
