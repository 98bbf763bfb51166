#!/usr/bin/env python3
"""
facetcut CLI

Inspection commands for selector catalogs, version tags, the deployment
ledger and configuration.

Usage:
    python -m facetcut <command> [subcommand] [options]

Commands:
    selectors   Selector catalog of a compiled artifact
    selector    Selector of one operation signature
    version     Version tag of a source file
    ledger      Address map, deployment history and diamond ledger
    config      Configuration management
"""

from __future__ import annotations

import argparse
import json
import pathlib
import sys
from enum import Enum
from typing import Any, List, Optional, Tuple

import yaml

from facetcut import __version__
from facetcut.config import ConfigError, get_config_manager
from facetcut.core import load_json
from facetcut.errors import FacetCutError
from facetcut.ledger import DeploymentLedger, Environment, LedgerContext, resolve_version_file
from facetcut.observability import FacetLayer, configure_logging, get_logger
from facetcut.selectors import InterfaceDescription, SelectorCatalog, canonical_signature, selector_of

logger = get_logger("cli", FacetLayer.CLI)


class OutputFormat(Enum):
    """Output format options."""
    JSON = "json"
    YAML = "yaml"
    TABLE = "table"


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
        return yaml.safe_dump(data, default_flow_style=False, sort_keys=False)
    return _format_table(data)


def _format_table(data: Any) -> str:
    """Format data as ASCII table."""
    if isinstance(data, list) and data and isinstance(data[0], dict):
        headers = list(data[0].keys())
        rows = [[str(row.get(h, "")) for h in headers] for row in data]
        widths = [max(len(h), max(len(r[i]) for r in rows)) for i, h in enumerate(headers)]

        lines = [" | ".join(h.ljust(widths[i]) for i, h in enumerate(headers))]
        lines.append("-+-".join("-" * w for w in widths))
        for row in rows:
            lines.append(" | ".join(c.ljust(widths[i]) for i, c in enumerate(row)))
        return "\n".join(lines)
    elif isinstance(data, dict):
        return "\n".join(f"{k}: {v}" for k, v in data.items())
    return str(data)


class FacetCutCLI:
    """Main CLI application."""

    def __init__(self):
        self.parser = argparse.ArgumentParser(
            prog="facetcut",
            description="Diamond facet reconciliation and deployment ledger tools",
            formatter_class=argparse.RawDescriptionHelpFormatter,
        )
        self.parser.add_argument(
            "--version", "-V",
            action="version",
            version=f"facetcut {__version__}",
        )
        self.parser.add_argument(
            "--format", "-f",
            choices=[f.value for f in OutputFormat],
            default="json",
            help="Output format (default: json)",
        )
        self.parser.add_argument("--config", "-c", help="YAML configuration file")
        self.parser.add_argument(
            "--quiet", "-q",
            action="store_true",
            help="Suppress error messages and logs",
        )

        self.subparsers = self.parser.add_subparsers(dest="command", help="Commands")
        self._register_commands()

    def _register_commands(self) -> None:
        selectors = self.subparsers.add_parser("selectors", help="Selector catalog of an artifact")
        selectors.add_argument("artifact", help="Compiler artifact or bare ABI JSON file")
        selectors.add_argument(
            "--exclude", "-x",
            action="append",
            default=[],
            help="Operation signature to leave out (repeatable)",
        )

        selector = self.subparsers.add_parser("selector", help="Selector of a signature")
        selector.add_argument("signature", help="e.g. 'transfer(address,uint256)'")

        version = self.subparsers.add_parser("version", help="Version tag of a source file")
        version.add_argument("source", help="Source file carrying the version marker")

        self._register_ledger_commands()

        config = self.subparsers.add_parser("config", help="Configuration management")
        config_sub = config.add_subparsers(dest="subcommand")
        get = config_sub.add_parser("get", help="Get configuration value")
        get.add_argument("path", help="Dotted path, e.g. ledger.directory")
        config_sub.add_parser("show", help="Show all configuration")
        config_sub.add_parser("validate", help="Validate configuration")

    def _register_ledger_commands(self) -> None:
        ledger = self.subparsers.add_parser("ledger", help="Deployment ledger inspection")
        ledger_sub = ledger.add_subparsers(dest="subcommand")

        def target(p: argparse.ArgumentParser) -> None:
            p.add_argument("--network", "-n", help="Network name (default: from config)")
            p.add_argument("--production", action="store_true", default=None, help="Read production ledgers")
            p.add_argument("--dir", "-d", help="Ledger directory (default: from config)")

        target(ledger_sub.add_parser("addresses", help="Address map"))

        history = ledger_sub.add_parser("history", help="Deployment history of a module")
        target(history)
        history.add_argument("module", help="Module name")
        history.add_argument("--tag", "-t", help="Restrict to one version tag")

        target(ledger_sub.add_parser("modules", help="Modules with recorded deployments"))
        target(ledger_sub.add_parser("diamond", help="Diamond facets and initial fund"))

    def run(self, args: Optional[List[str]] = None) -> int:
        """Run the CLI."""
        parsed = self.parser.parse_args(args)

        if not parsed.command:
            self.parser.print_help()
            return 0

        try:
            mgr = get_config_manager()
            mgr.load_defaults()
            if parsed.config:
                mgr.load_from_file(parsed.config)
            obs = mgr.config.observability
            level = "critical" if parsed.quiet else obs.log_level.get()
            configure_logging(level, obs.log_format.get())

            fmt = OutputFormat(parsed.format)
            result = self._dispatch(parsed)
            if result is not None:
                print(format_output(result, fmt))
            return 0

        except CLIError as e:
            if not parsed.quiet:
                print(f"Error: {e}", file=sys.stderr)
            return e.exit_code

        except (FacetCutError, ConfigError, ValueError, OSError) as e:
            logger.error("command failed", error_code=getattr(e, "error_code", ""), command=parsed.command)
            if not parsed.quiet:
                print(f"Error: {e}", file=sys.stderr)
            return 1

    def _dispatch(self, args: argparse.Namespace) -> Any:
        """Dispatch command to handler."""
        cmd = args.command
        subcmd = getattr(args, "subcommand", None)

        handler_name = f"_handle_{cmd}_{subcmd}" if subcmd else f"_handle_{cmd}"
        handler = getattr(self, handler_name, None)

        if handler is None:
            raise CLIError(f"Unknown command: {cmd} {subcmd or ''}".strip(), exit_code=2)

        return handler(args)

    # Selector handlers
    def _handle_selectors(self, args: argparse.Namespace) -> Any:
        data = load_json(pathlib.Path(args.artifact))
        abi = data.get("abi") if isinstance(data, dict) else data
        if not isinstance(abi, list):
            raise CLIError(f"{args.artifact} holds neither an artifact nor an ABI")

        config = get_config_manager().config
        catalog = SelectorCatalog(config.cut.initializer_signature.get())
        described = catalog.describe(InterfaceDescription.from_abi(abi))
        kept = catalog.subtract(described.values(), args.exclude)
        return [
            {"signature": sig, "selector": sel}
            for sig, sel in described.items()
            if sel in kept
        ]

    def _handle_selector(self, args: argparse.Namespace) -> Any:
        return {
            "signature": canonical_signature(args.signature),
            "selector": selector_of(args.signature),
        }

    def _handle_version(self, args: argparse.Namespace) -> Any:
        marker = get_config_manager().config.ledger.version_marker.get()
        return {"source": args.source, "version": resolve_version_file(args.source, marker)}

    # Ledger handlers
    def _ledger(self, args: argparse.Namespace) -> Tuple[DeploymentLedger, LedgerContext]:
        config = get_config_manager().config
        ctx = LedgerContext.from_config(config, network=args.network)
        if args.production is not None:
            ctx = LedgerContext(ctx.network, Environment.PRODUCTION, ctx.live)
        ledger = DeploymentLedger(
            args.dir or config.ledger.directory.get(),
            strict_address_map=config.ledger.strict_address_map.get(),
        )
        return ledger, ctx

    def _handle_ledger_addresses(self, args: argparse.Namespace) -> Any:
        ledger, ctx = self._ledger(args)
        return [{"module": name, "address": addr} for name, addr in sorted(ledger.addresses(ctx).items())]

    def _handle_ledger_history(self, args: argparse.Namespace) -> Any:
        ledger, ctx = self._ledger(args)
        history = ledger.history(ctx, args.module, version=args.tag)
        return [
            {"version": version, **record.to_json()}
            for version, records in history.items()
            for record in records
        ]

    def _handle_ledger_modules(self, args: argparse.Namespace) -> Any:
        ledger, ctx = self._ledger(args)
        return {"network": ctx.network, "environment": ctx.environment.value, "modules": ledger.modules(ctx)}

    def _handle_ledger_diamond(self, args: argparse.Namespace) -> Any:
        ledger, ctx = self._ledger(args)
        return ledger.diamond(ctx).to_json()

    # Config handlers
    def _handle_config_get(self, args: argparse.Namespace) -> Any:
        mgr = get_config_manager()
        return {"path": args.path, "value": mgr.get(args.path)}

    def _handle_config_show(self, args: argparse.Namespace) -> Any:
        return get_config_manager().config.to_dict()

    def _handle_config_validate(self, args: argparse.Namespace) -> Any:
        errors = get_config_manager().validate()
        if errors:
            raise CLIError("; ".join(errors))
        return {"valid": True, "errors": []}


def main() -> int:
    """CLI entry point."""
    cli = FacetCutCLI()
    return cli.run()


if __name__ == "__main__":
    sys.exit(main())
