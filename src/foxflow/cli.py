# ABOUTME: Command-line interface for foxflow migrations
# ABOUTME: Provides the migrate command and an inspect command for single FOXML files
"""foxflow command-line interface"""

import logging
import sys
from pathlib import Path

import click
from dotenv import load_dotenv
from rich.console import Console
from rich.table import Table

from foxflow.config import MigrationConfig
from foxflow.content import HttpURLFetcher
from foxflow.exceptions import MigrationError
from foxflow.foxml.decoder import FoxmlDecoder
from foxflow.foxml.resolvers import AkubraFSIDResolver, LegacyFSIDResolver
from foxflow.foxml.sources import (
    ArchiveExportedFoxmlDirectoryObjectSource,
    NativeFoxmlDirectoryObjectSource,
)
from foxflow.handlers import (
    ConsoleLoggingHandler,
    ObjectAbstractionHandler,
    VersionAbstractionHandler,
)
from foxflow.logging_config import setup_logging
from foxflow.migrator import Migrator
from foxflow.models import ObjectReference
from foxflow.ocfl.store import OcflRepository
from foxflow.ocfl.writer import ArchiveGroupWriter
from foxflow.pidlist import ResumePidListManager, UserProvidedPidListManager
from foxflow.versions import reconstruct_versions

logger = logging.getLogger(__name__)

RESOLVERS = {"akubra": AkubraFSIDResolver, "legacy": LegacyFSIDResolver}


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.option("--log-file", default=None, help="Also log to this file (rotated)")
@click.option("--log-dir", type=click.Path(file_okay=False), default=None,
              help="Directory for --log-file (default: current directory)")
@click.pass_context
def cli(ctx, debug, log_file, log_dir):
    """foxflow - Migrate FOXML repository objects into OCFL archive groups"""
    # Load FOXFLOW_* settings from .env if present
    load_dotenv()

    ctx.ensure_object(dict)
    setup_logging("DEBUG" if debug else "INFO", log_file=log_file, log_dir=log_dir)


@cli.command()
@click.option(
    "--source-type",
    type=click.Choice(["akubra", "legacy", "exported"]),
    required=True,
    help="Native Akubra or legacy storage, or a directory of archive exports",
)
@click.option("--datastreams-dir", type=click.Path(exists=True, file_okay=False), default=None)
@click.option("--objects-dir", type=click.Path(exists=True, file_okay=False), default=None)
@click.option("--exported-dir", type=click.Path(exists=True, file_okay=False), default=None)
@click.option("--target-dir", type=click.Path(file_okay=False), default=None)
@click.option("--index-dir", type=click.Path(file_okay=False), default=None,
              help="Keep the datastream index here to reuse it on later runs")
@click.option("--limit", type=int, default=-1, help="Stop after this many objects (-1: all)")
@click.option("--resume", is_flag=True, help="Skip objects migrated by an earlier run")
@click.option("--continue-on-error", is_flag=True, help="Log failing objects and keep going")
@click.option("--pid-file", type=click.Path(exists=True, dir_okay=False), default=None)
@click.option("--extensions", is_flag=True, help="Add file extensions based on mime types")
@click.option("--delete-inactive", is_flag=True, help="Migrate inactive datastreams as deleted")
@click.option("--import-external", is_flag=True, help="Copy External content into storage")
@click.option("--import-redirect", is_flag=True, help="Copy Redirect content into storage")
@click.option("--rich-descriptions", is_flag=True,
              help="Add digests, sizes and timestamps to binary descriptions")
@click.option("--f3hostname", default=None, help="Host replacing local.fedora.server in URLs")
@click.option("--username", default=None, help="User recorded on migrated resources")
@click.option("--user-uri", default=None, help="Address recorded on every commit")
@click.option("--no-checksum-validation", is_flag=True, help="Do not verify declared digests")
def migrate(
    source_type,
    datastreams_dir,
    objects_dir,
    exported_dir,
    target_dir,
    index_dir,
    limit,
    resume,
    continue_on_error,
    pid_file,
    extensions,
    delete_inactive,
    import_external,
    import_redirect,
    rich_descriptions,
    f3hostname,
    username,
    user_uri,
    no_checksum_validation,
):
    """Migrate a FOXML repository into OCFL storage"""
    config = MigrationConfig.from_env()
    if target_dir:
        config.target_dir = target_dir
    if f3hostname:
        config.local_server = f3hostname
    if username:
        config.user = username
    if user_uri:
        config.user_uri = user_uri
    config.add_datastream_extensions |= extensions
    config.delete_inactive |= delete_inactive
    config.import_external |= import_external
    config.import_redirect |= import_redirect
    config.rich_descriptions |= rich_descriptions
    if no_checksum_validation:
        config.validate_checksums = False

    resolver = None
    try:
        config.validate()
        if source_type == "exported":
            if not exported_dir:
                raise click.UsageError("--exported-dir is required for exported sources")
            source = ArchiveExportedFoxmlDirectoryObjectSource(
                exported_dir,
                fetcher=HttpURLFetcher(),
                local_server=config.local_server,
                validate_checksums=config.validate_checksums,
            )
        else:
            if not (datastreams_dir and objects_dir):
                raise click.UsageError(
                    "--datastreams-dir and --objects-dir are required for native sources"
                )
            resolver = RESOLVERS[source_type](datastreams_dir, index_dir)
            source = NativeFoxmlDirectoryObjectSource(
                objects_dir,
                resolver=resolver,
                fetcher=HttpURLFetcher(),
                local_server=config.local_server,
                validate_checksums=config.validate_checksums,
            )

        repository = OcflRepository(
            config.storage_dir,
            staging_root=config.staging_dir,
            digest_algorithm=config.digest_algorithm,
            author_name=config.user,
            author_address=config.user_uri,
            version_message=config.version_message,
        )
        writer = ArchiveGroupWriter(repository, config)
        migrator = Migrator(
            source,
            ObjectAbstractionHandler(VersionAbstractionHandler(writer)),
            limit=limit,
            resume_manager=ResumePidListManager(config.pid_dir, accept_all=not resume),
            pid_manager=UserProvidedPidListManager(pid_file) if pid_file else None,
            continue_on_error=continue_on_error,
        )
        report = migrator.run()
    except MigrationError as e:
        logger.error(f"Migration failed: {e}")
        sys.exit(1)
    finally:
        if resolver is not None:
            resolver.close()

    click.echo(f"Migrated {report.succeeded} of {report.processed} objects into {config.storage_dir}")
    if report.failures:
        click.echo(f"{len(report.failures)} objects failed:", err=True)
        for pid, message in report.failures.items():
            click.echo(f"  {pid}: {message}", err=True)
        sys.exit(1)


class _ObjectCollector:
    def __init__(self):
        self.obj: ObjectReference | None = None

    def process_object(self, obj: ObjectReference) -> None:
        self.obj = obj


@cli.command()
@click.argument("foxml_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--datastreams-dir", type=click.Path(exists=True, file_okay=False), default=None)
@click.option("--source-type", type=click.Choice(["akubra", "legacy"]), default="akubra")
@click.option("--events", is_flag=True, help="Log decoder events instead of the timeline")
def inspect(foxml_file, datastreams_dir, source_type, events):
    """Show the version timeline of one FOXML file"""
    resolver = RESOLVERS[source_type](datastreams_dir) if datastreams_dir else None
    collector = _ObjectCollector()
    handler = ConsoleLoggingHandler() if events else ObjectAbstractionHandler(collector)
    try:
        with FoxmlDecoder.from_path(Path(foxml_file), resolver=resolver) as decoder:
            decoder.process(handler)
    except MigrationError as e:
        click.echo(f"Cannot read {foxml_file}: {e}", err=True)
        sys.exit(1)
    finally:
        if resolver is not None:
            resolver.close()

    if events:
        return

    obj = collector.obj
    console = Console()
    table = Table(title=f"{obj.pid}: {len(obj.datastream_ids())} datastreams")
    table.add_column("#", justify="right")
    table.add_column("Version date")
    table.add_column("Datastream versions")
    for ov in reconstruct_versions(obj):
        changed = ", ".join(
            f"{dv.version_id} ({dv.info.control_group.value})" for dv in ov.changed
        )
        table.add_row(str(ov.version_index), ov.version_date, changed)
    console.print(table)


if __name__ == "__main__":
    cli()
