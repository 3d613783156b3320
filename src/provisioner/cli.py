"""
Passkey Provisioner Command Line Interface.

Provides commands for provisioning and auditing security keys:
- auth-method: Configure the FIDO2 authentication method allow-list
- auth-strength: Create an authentication strength policy
- enroll: Register a security key for a user or each member of a group
- report: List users and their registered security keys
- catalog: Show the known security key models
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Any, Sequence

import yaml

from provisioner import __version__
from provisioner.catalog import (
    CertificationLevel,
    DeviceCatalog,
    default_catalog,
    load_catalog,
)
from provisioner.config import LoggingConfig, ProvisionerConfig, load_config, validate_config
from provisioner.directory import (
    SCOPES_ENROLL,
    SCOPES_POLICY,
    SCOPES_REPORT,
    DirectoryClient,
    DirectorySession,
    create_token_provider,
)
from provisioner.enrollment import ConsoleOperator, EnrollmentLog, EnrollmentOrchestrator
from provisioner.errors import AuthError, ProvisionerError, ValidationError
from provisioner.policy import PolicyBuilder, PolicyDocument
from provisioner.report import ReportBuilder, format_report_table, write_report_csv


logger = logging.getLogger("provisioner")


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        prog="passkey-provisioner",
        description="Provision YubiKeys as Entra ID passkeys",
    )
    parser.add_argument(
        "-V", "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "-c", "--config",
        metavar="FILE",
        help="Path to configuration file",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Output in JSON format",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # auth-method command
    method_parser = subparsers.add_parser(
        "auth-method", help="Configure the FIDO2 authentication method policy"
    )
    _add_selection_arguments(method_parser)
    method_parser.set_defaults(func=cmd_auth_method)

    # auth-strength command
    strength_parser = subparsers.add_parser(
        "auth-strength", help="Create an authentication strength policy"
    )
    _add_selection_arguments(strength_parser)
    strength_parser.add_argument(
        "-n", "--name",
        default=None,
        help="Policy display name (default: YubiKey)",
    )
    strength_parser.set_defaults(func=cmd_auth_strength)

    # enroll command
    enroll_parser = subparsers.add_parser("enroll", help="Enroll security keys")
    target = enroll_parser.add_mutually_exclusive_group(required=True)
    target.add_argument("-u", "--user", help="User principal name")
    target.add_argument("-g", "--group", help="Group display name (one key per member)")
    enroll_parser.add_argument(
        "-o", "--output",
        help="Enrollment output file (default from config)",
    )
    enroll_parser.set_defaults(func=cmd_enroll)

    # report command
    report_parser = subparsers.add_parser("report", help="Report registered security keys")
    report_parser.add_argument(
        "users",
        nargs="*",
        help="User principal names (default: all users)",
    )
    report_parser.add_argument(
        "-o", "--output",
        help="Write CSV to file instead of printing a table",
    )
    report_parser.set_defaults(func=cmd_report)

    # catalog command
    catalog_parser = subparsers.add_parser("catalog", help="Show known security key models")
    catalog_parser.add_argument("--id", dest="device_id", help="Show models for one AAGUID")
    catalog_parser.set_defaults(func=cmd_catalog)

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    try:
        config = load_config(args.config)
    except (FileNotFoundError, TypeError, yaml.YAMLError) as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    setup_logging(config.logging, verbose=args.verbose)

    try:
        return args.func(args, config)
    except AuthError as e:
        print(f"Authentication failed: {e}", file=sys.stderr)
        return 1
    except ProvisionerError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\nAborted", file=sys.stderr)
        return 130


def _add_selection_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("aaguids", nargs="*", help="AAGUIDs to allow")
    parser.add_argument(
        "-a", "--all",
        action="store_true",
        help="Allow every AAGUID in the catalog",
    )
    parser.add_argument(
        "--level",
        choices=[level.value for level in CertificationLevel],
        help="Allow every AAGUID with this certification level",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Print the policy without sending it",
    )


def setup_logging(config: LoggingConfig, verbose: bool = False) -> None:
    """Configure logging based on config."""
    level_name = "debug" if verbose else config.level
    level = getattr(logging, level_name.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        filename=config.file,
    )


def output(data: Any, args: argparse.Namespace) -> None:
    """Output data in requested format."""
    if getattr(args, "json", False):
        print(json.dumps(data, indent=2, default=str))
    elif isinstance(data, dict):
        for key, value in data.items():
            print(f"{key}: {value}")
    else:
        print(data)


def get_catalog(config: ProvisionerConfig) -> DeviceCatalog:
    """Get the configured catalog, or the bundled one."""
    if config.catalog.file:
        try:
            return load_catalog(config.catalog.file)
        except FileNotFoundError as e:
            raise ValidationError(str(e)) from e
    return default_catalog()


def open_session(config: ProvisionerConfig, scopes: Sequence[str]) -> DirectorySession:
    """Create a directory session after checking the configuration."""
    errors = validate_config(config)
    if errors:
        raise ValidationError("Invalid configuration: " + "; ".join(errors))

    provider = create_token_provider(
        config.directory,
        on_prompt=lambda message: print(message, file=sys.stderr),
    )
    return DirectorySession(
        provider,
        graph_url=config.directory.graph_url,
        timeout=config.directory.timeout,
        scopes=scopes,
    )


def select_device_ids(args: argparse.Namespace, catalog: DeviceCatalog) -> set[str]:
    """Resolve the AAGUID selection arguments."""
    selected = set(args.aaguids)
    if args.all:
        selected |= catalog.all_ids()
    if args.level:
        selected |= catalog.select(certification=CertificationLevel(args.level))
    return selected


def _send_policy(
    document: PolicyDocument,
    args: argparse.Namespace,
    config: ProvisionerConfig,
) -> int:
    if args.dry_run:
        print(json.dumps(document.to_dict(), indent=2))
        return 0

    with open_session(config, SCOPES_POLICY) as session:
        result = DirectoryClient(session).apply_policy(document)

    if getattr(args, "json", False):
        output(result or {"status": "updated", "endpoint": document.endpoint}, args)
    else:
        print(f"Policy applied: {document.method} {document.endpoint}")
        print(f"Allowed AAGUIDs: {len(document.allowed_ids)}")
    return 0


def cmd_auth_method(args: argparse.Namespace, config: ProvisionerConfig) -> int:
    """Configure the FIDO2 authentication method policy."""
    catalog = get_catalog(config)
    document = PolicyBuilder(catalog).auth_method_policy(select_device_ids(args, catalog))
    return _send_policy(document, args, config)


def cmd_auth_strength(args: argparse.Namespace, config: ProvisionerConfig) -> int:
    """Create an authentication strength policy."""
    catalog = get_catalog(config)
    document = PolicyBuilder(catalog).auth_strength_policy(
        select_device_ids(args, catalog), args.name
    )
    return _send_policy(document, args, config)


def cmd_enroll(args: argparse.Namespace, config: ProvisionerConfig) -> int:
    """Enroll security keys."""
    from provisioner.hardware.yubikey import YubiKeyProvider

    log = EnrollmentLog(args.output or config.enrollment.output_file)

    with open_session(config, SCOPES_ENROLL) as session:
        orchestrator = EnrollmentOrchestrator(
            directory=DirectoryClient(session),
            keys=YubiKeyProvider(origin=config.enrollment.origin),
            operator=ConsoleOperator(),
            log=log,
            config=config.enrollment,
            catalog=get_catalog(config),
        )

        if args.user:
            record = orchestrator.enroll_user(args.user)
            if getattr(args, "json", False):
                output({"identity": record.identity, "serial": record.hardware_serial,
                        "model": record.model_label, "output": str(log.path)}, args)
            else:
                print(f"Enrollment recorded in {log.path}")
            return 0

        result = orchestrator.enroll_group(args.group)

    if getattr(args, "json", False):
        output(result.to_dict(), args)
    else:
        print(f"Group Enrollment: {result.group}")
        print("=" * 50)
        print(f"Succeeded:  {len(result.succeeded)}")
        print(f"Failed:     {len(result.failed)}")
        for identity, error in result.failed.items():
            print(f"  - {identity}: {error}")
        print(f"Output:     {log.path}")
    return 0 if not result.failed else 1


def cmd_report(args: argparse.Namespace, config: ProvisionerConfig) -> int:
    """Report registered security keys."""
    with open_session(config, SCOPES_REPORT) as session:
        builder = ReportBuilder(DirectoryClient(session), get_catalog(config))
        rows = builder.build(args.users or None)

        if args.output:
            count = write_report_csv(rows, args.output)
            print(f"Exported {count} rows to: {args.output}")
        elif getattr(args, "json", False):
            output([row.to_dict() for row in rows], args)
        else:
            print(format_report_table(rows), end="")
    return 0


def cmd_catalog(args: argparse.Namespace, config: ProvisionerConfig) -> int:
    """Show known security key models."""
    catalog = get_catalog(config)
    records = catalog.lookup_all(args.device_id) if args.device_id else catalog.records

    if args.device_id and not records:
        print(f"Unknown AAGUID: {args.device_id}")
        return 1

    if getattr(args, "json", False):
        output([record.to_dict() for record in records], args)
        return 0

    print(f"Known Security Keys ({len(records)} entries)")
    print("=" * 100)
    print(f"{'Model':<50} {'Firmware':<12} {'AAGUID':<38}Cert")
    print("-" * 100)
    for record in records:
        print(
            f"{record.model[:50]:<50} "
            f"{record.firmware_label:<12} "
            f"{record.device_id:<38}"
            f"{record.certification_level}"
        )
    return 0


if __name__ == "__main__":
    sys.exit(main())
