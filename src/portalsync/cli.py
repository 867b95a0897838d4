"""
Command-line interface for portalsync.

Provides commands to back up (download) and restore (upload) an Azure API
Management developer portal, reset it, publish it, and inspect archives
and instance endpoints.

Uses Python's argparse module (no external CLI libraries).
"""

from __future__ import annotations

import argparse
import getpass
import json
import logging
import sys
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, NoReturn

from portalsync import __version__
from portalsync.archive import ArchiveError, ArchiveReader
from portalsync.config.credentials import (
    CredentialError,
    CredentialStore,
    resolve_client_secret,
)
from portalsync.config.settings import (
    ConfigurationError,
    Settings,
    get_config_path,
    load_config,
    require_instance,
    save_config,
)
from portalsync.remote import (
    BlobContainerClient,
    ManagementClient,
    PortalClient,
    PortalContentClient,
    PortalEndpoints,
    RemoteError,
)
from portalsync.sync import ReconciliationError, Synchronizer

# Set up logging
logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Global verbosity settings (set during main() based on args)
_quiet_mode = False
_verbose_level = 0


def set_output_mode(quiet: bool = False, verbose: int = 0) -> None:
    """
    Set the output mode for the CLI.

    Args:
        quiet: If True, suppress non-essential output.
        verbose: Verbosity level (0=normal, 1+=verbose).
    """
    global _quiet_mode, _verbose_level
    _quiet_mode = quiet
    _verbose_level = verbose


def output(message: str = "", force: bool = False) -> None:
    """
    Print a message to stdout, respecting quiet mode.

    Args:
        message: The message to print.
        force: If True, print even in quiet mode (for essential output like JSON).
    """
    if force or not _quiet_mode:
        print(message)


def output_error(message: str) -> None:
    """Print an error message (always shown, even in quiet mode)."""
    print(message, file=sys.stderr)


def output_json(data: Any) -> None:
    output(json.dumps(data, indent=4, default=str), force=True)


class JsonLogFormatter(logging.Formatter):
    """Formats each log record as one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def create_parser() -> argparse.ArgumentParser:
    """Create and configure the argument parser for the portalsync CLI."""
    parser = argparse.ArgumentParser(
        prog="portalsync",
        description="Back up and restore Azure API Management developer portals",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"portalsync {__version__}",
    )

    parser.add_argument(
        "--config",
        metavar="PATH",
        help="Override config file location (default: ~/.portalsync/config.yaml)",
    )

    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Increase output verbosity (can be repeated)",
    )

    parser.add_argument(
        "-q", "--quiet",
        action="store_true",
        help="Suppress non-essential output",
    )

    # Options shared by every command that talks to an instance
    instance = argparse.ArgumentParser(add_help=False)
    instance.add_argument(
        "--apim",
        metavar="NAME",
        help="API Management instance (overrides azure.service_name)",
    )
    instance.add_argument(
        "--rg",
        metavar="GROUP",
        help="Resource group containing the instance (overrides azure.resource_group)",
    )

    json_option = argparse.ArgumentParser(add_help=False)
    json_option.add_argument(
        "-j", "--json",
        action="store_true",
        help="Output as JSON",
    )

    subparsers = parser.add_subparsers(
        title="commands",
        dest="command",
        metavar="<command>",
    )

    # configure command
    configure_parser = subparsers.add_parser(
        "configure",
        parents=[instance],
        help="Set up the Azure service principal and instance",
        description="Write instance settings to the config file and store the "
        "client secret in the encrypted credential store.",
    )
    configure_parser.set_defaults(func=cmd_configure)

    # download command
    download_parser = subparsers.add_parser(
        "download",
        parents=[instance],
        help="Back up the developer portal to an archive",
        description="Download all content items and media blobs into a ZIP archive.",
    )
    download_parser.add_argument(
        "--out",
        metavar="FILE",
        required=True,
        help="Archive file to create",
    )
    download_parser.add_argument(
        "-f", "--force",
        action="store_true",
        help="Overwrite an existing archive",
    )
    download_parser.set_defaults(func=cmd_download)

    # upload command
    upload_parser = subparsers.add_parser(
        "upload",
        parents=[instance],
        help="Restore the developer portal from an archive",
        description="Upload all content items and media blobs from a ZIP archive, "
        "then delete portal content the archive does not contain.",
    )
    upload_parser.add_argument(
        "--in",
        dest="in_file",
        metavar="FILE",
        required=True,
        help="Archive file to upload",
    )
    upload_parser.add_argument(
        "--nodelete",
        action="store_true",
        help="Do not delete extraneous content from the portal",
    )
    upload_parser.set_defaults(func=cmd_upload)

    # reset command
    reset_parser = subparsers.add_parser(
        "reset",
        parents=[instance],
        help="Delete all developer portal content",
        description="Delete every content item and media blob of the portal.",
    )
    reset_parser.add_argument(
        "-y", "--yes",
        action="store_true",
        help="Do not ask for confirmation",
    )
    reset_parser.set_defaults(func=cmd_reset)

    # inspect command
    inspect_parser = subparsers.add_parser(
        "inspect",
        parents=[json_option],
        help="List the entries of an archive",
        description="Show the entries of a portal archive without contacting Azure.",
    )
    inspect_parser.add_argument(
        "archive",
        metavar="FILE",
        help="Archive file to inspect",
    )
    inspect_parser.set_defaults(func=cmd_inspect)

    # endpoints command
    endpoints_parser = subparsers.add_parser(
        "endpoints",
        parents=[instance, json_option],
        help="Show developer portal endpoints",
        description="Display the portal, management API and media storage URLs.",
    )
    endpoints_parser.set_defaults(func=cmd_endpoints)

    # sastoken command
    sastoken_parser = subparsers.add_parser(
        "sastoken",
        parents=[instance, json_option],
        help="Print a management API SAS token",
        description="Request a SharedAccessSignature token for the Administrator user.",
    )
    sastoken_parser.set_defaults(func=cmd_sastoken)

    # status command
    status_parser = subparsers.add_parser(
        "status",
        parents=[instance, json_option],
        help="Show developer portal status",
        description="Display whether the portal is deployed and when it was published.",
    )
    status_parser.set_defaults(func=cmd_status)

    # publish command
    publish_parser = subparsers.add_parser(
        "publish",
        parents=[instance],
        help="Publish the developer portal",
        description="Trigger a publish of the developer portal.",
    )
    publish_parser.add_argument(
        "-w", "--wait",
        action="store_true",
        help="Wait for the publish to complete",
    )
    publish_parser.add_argument(
        "--timeout",
        type=int,
        default=300,
        metavar="SECONDS",
        help="Maximum time to wait with --wait (default: 300)",
    )
    publish_parser.set_defaults(func=cmd_publish)

    return parser


def setup_logging(verbose: int, quiet: bool, settings: Settings | None = None) -> None:
    """
    Configure logging based on verbosity level and settings.

    -q and -v take precedence over the configured log level.
    """
    if quiet:
        level = logging.WARNING
    elif verbose > 0:
        level = logging.DEBUG
    elif settings is not None:
        level = getattr(logging, settings.log_level, logging.INFO)
    else:
        level = logging.INFO

    handlers: list[logging.Handler] = []
    if settings is not None and settings.log_file:
        handlers.append(logging.FileHandler(settings.log_file))
    else:
        handlers.append(logging.StreamHandler())

    if settings is not None and settings.log_format == "json":
        for handler in handlers:
            handler.setFormatter(JsonLogFormatter())

    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT,
        handlers=handlers,
        force=True,
    )

    # urllib3 connection logging only with -vv
    if verbose < 2:
        logging.getLogger("urllib3").setLevel(logging.WARNING)


def load_settings(args: argparse.Namespace) -> Settings:
    """Load configuration and apply --apim and --rg overrides."""
    config_path = Path(args.config) if args.config else None
    settings = load_config(config_path)

    if getattr(args, "apim", None):
        settings.azure.service_name = args.apim
    if getattr(args, "rg", None):
        settings.azure.resource_group = args.rg

    return settings


def connect(settings: Settings) -> PortalEndpoints:
    """
    Resolve the instance's portal endpoints and a SAS token.

    Raises:
        ConfigurationError: If the instance is not fully configured.
        CredentialError: If no client secret is available.
        RemoteError: If Azure rejects or fails a request.
    """
    require_instance(settings)
    secret = resolve_client_secret(settings.azure.client_id, prompt=getpass.getpass)
    return ManagementClient(settings, secret).build_endpoints()


def build_synchronizer(settings: Settings, endpoints: PortalEndpoints) -> Synchronizer:
    content = PortalContentClient(
        endpoints.management_url,
        endpoints.sas_token,
        timeout=settings.http.timeout,
        api_version=settings.azure.api_version,
    )
    blobs = BlobContainerClient(endpoints.blob_storage_url, timeout=settings.http.timeout)
    return Synchronizer(content, blobs)


def cmd_configure(args: argparse.Namespace, settings: Settings) -> int:
    """Interactive configuration of the instance and client secret."""
    output("portalsync Configuration")
    output("=" * 50)
    output()

    azure = settings.azure
    prompts = [
        ("subscription_id", "Subscription id"),
        ("tenant_id", "Tenant id"),
        ("client_id", "Service principal client id"),
        ("resource_group", "Resource group"),
        ("service_name", "API Management instance"),
    ]
    for attr, label in prompts:
        current = getattr(azure, attr)
        suffix = f" [{current}]" if current else ""
        value = input(f"{label}{suffix}: ").strip()
        if value:
            setattr(azure, attr, value)

    config_path = Path(args.config) if args.config else get_config_path()
    save_config(settings, config_path)
    output(f"Configuration saved to {config_path}")

    if not azure.client_id:
        output("No client id set; skipping client secret.")
        return 0

    store = CredentialStore()
    if store.is_initialized():
        store.unlock(getpass.getpass("Enter passphrase to unlock credentials: "))
    else:
        output()
        output("Creating encrypted credential store.")
        passphrase = getpass.getpass("Choose a passphrase (12+ characters): ")
        if passphrase != getpass.getpass("Repeat passphrase: "):
            output_error("Error: Passphrases do not match.")
            return 1
        try:
            store.initialize(passphrase)
        except ValueError as e:
            output_error(f"Error: {e}")
            return 1

    try:
        secret = getpass.getpass(f"Client secret for {azure.client_id} (empty to keep): ")
        if secret:
            store.set_secret(azure.client_id, secret)
            output("Client secret saved.")
        else:
            output("Client secret unchanged.")
    finally:
        store.lock()

    return 0


def cmd_download(args: argparse.Namespace, settings: Settings) -> int:
    """Back up the developer portal to an archive."""
    out_path = Path(args.out)
    if out_path.exists() and not args.force:
        output_error(f"Error: {out_path}: file exists. Use --force to overwrite existing file")
        return 1

    endpoints = connect(settings)
    result = build_synchronizer(settings, endpoints).capture(out_path, overwrite=args.force)

    output()
    output(f"Portal downloaded to {result.path}")
    output(f"  Content items: {result.content_items.summary()}")
    output(f"  Media blobs:   {result.blobs.summary()}")
    return 0


def cmd_upload(args: argparse.Namespace, settings: Settings) -> int:
    """Restore the developer portal from an archive."""
    in_path = Path(args.in_file)
    if not in_path.exists():
        output_error(f"Error: Archive not found: {in_path}")
        return 1

    endpoints = connect(settings)
    synchronizer = build_synchronizer(settings, endpoints)

    try:
        result = synchronizer.apply(in_path, delete_extra=not args.nodelete)
    except ReconciliationError as e:
        output_error(f"Error: {e}")
        reconcile = e.result
        output(f"  Extra content items deleted: {reconcile.content_items.summary()}")
        output(f"  Extra media blobs deleted:   {reconcile.blobs.summary()}")
        return 1

    output()
    output(f"Portal uploaded from {result.path}")
    output(f"  Content items: {result.content_items.summary()}")
    output(f"  Media blobs:   {result.blobs.summary()}")
    if result.reconcile is not None:
        output(f"  Extra content items deleted: {result.reconcile.content_items.summary()}")
        output(f"  Extra media blobs deleted:   {result.reconcile.blobs.summary()}")
    else:
        output("  Extra content not deleted (--nodelete)")
    return 0


def cmd_reset(args: argparse.Namespace, settings: Settings) -> int:
    """Delete all developer portal content."""
    require_instance(settings)

    if not args.yes:
        output(
            f"WARNING: This will delete ALL developer portal content of "
            f"{settings.azure.service_name}."
        )
        response = input("Proceed with reset? [y/N]: ").strip().lower()
        if response not in ("y", "yes"):
            output("Reset cancelled.")
            return 0

    endpoints = connect(settings)
    result = build_synchronizer(settings, endpoints).reset()

    output()
    output("Portal reset")
    output(f"  Content items deleted: {result.content_items.summary()}")
    output(f"  Media blobs deleted:   {result.blobs.summary()}")
    return 0


def cmd_inspect(args: argparse.Namespace, settings: Settings) -> int:
    """List the entries of an archive."""
    with ArchiveReader(args.archive) as reader:
        entries = reader.entries()

    if args.json:
        output_json([
            {
                "name": entry.name,
                "size": entry.size,
                "compressed_size": entry.compressed_size,
                "modified": entry.modified.isoformat(),
            }
            for entry in entries
        ])
        return 0

    output(f"{'Size':>12}  {'Modified':<19}  Name")
    output("-" * 60)
    total = 0
    for entry in entries:
        total += entry.size
        output(f"{entry.size:>12,}  {entry.modified:%Y-%m-%d %H:%M:%S}  {entry.name}")
    output("-" * 60)
    output(f"{total:>12,}  {len(entries)} entries")
    return 0


def cmd_endpoints(args: argparse.Namespace, settings: Settings) -> int:
    """Show developer portal endpoints."""
    endpoints = connect(settings)

    if args.json:
        data = endpoints.to_dict()
        del data["sas_token"]
        output_json(data)
        return 0

    output(f"Developer portal: {endpoints.portal_url}")
    output(f"  Management API: {endpoints.management_url}")
    output(f"   Media storage: {endpoints.blob_storage_url}")
    return 0


def cmd_sastoken(args: argparse.Namespace, settings: Settings) -> int:
    """Print a management API SAS token."""
    require_instance(settings)
    secret = resolve_client_secret(settings.azure.client_id, prompt=getpass.getpass)
    token = ManagementClient(settings, secret).get_sas_token()

    if args.json:
        output_json({"token": token})
    else:
        output(token, force=True)
    return 0


def cmd_status(args: argparse.Namespace, settings: Settings) -> int:
    """Show developer portal status."""
    endpoints = connect(settings)
    portal = PortalClient(endpoints.portal_url, endpoints.sas_token, timeout=settings.http.timeout)

    status = portal.get_status()
    is_deployed = portal.is_deployed()

    if args.json:
        output_json(status.to_dict(is_deployed=is_deployed))
        return 0

    if status.published_at is not None:
        published = status.published_at.astimezone().strftime("%d %b %y %H:%M %Z")
    else:
        published = "[Not published]"

    output(f" Is deployed: {is_deployed}")
    output(f"Published at: {published}")
    output(f"Code version: {status.code_version}")
    output(f"     Version: {status.version}")
    return 0


def cmd_publish(args: argparse.Namespace, settings: Settings) -> int:
    """Publish the developer portal."""
    endpoints = connect(settings)
    portal = PortalClient(endpoints.portal_url, endpoints.sas_token, timeout=settings.http.timeout)

    portal.publish(wait=args.wait, timeout=args.timeout)

    output("Developer portal published" if args.wait else "Developer portal publish triggered")
    return 0


def main(argv: list[str] | None = None) -> NoReturn:
    """Main entry point for the portalsync CLI."""
    parser = create_parser()
    args = parser.parse_args(argv)

    set_output_mode(args.quiet, args.verbose)

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    try:
        settings = load_settings(args)
        setup_logging(args.verbose, args.quiet, settings)
        exit_code = args.func(args, settings)
        sys.exit(exit_code)
    except KeyboardInterrupt:
        output("\nOperation cancelled.")
        sys.exit(130)
    except CredentialError as e:
        output_error(f"Credential error: {e}")
        sys.exit(2)
    except ConfigurationError as e:
        output_error(f"Configuration error: {e}")
        sys.exit(2)
    except (ArchiveError, RemoteError) as e:
        output_error(f"Error: {e}")
        sys.exit(1)
    except Exception as e:
        if args.verbose > 0:
            raise
        output_error(f"Error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
