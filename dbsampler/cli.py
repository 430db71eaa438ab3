"""Command-line interface for DBSampler."""

import click
import json
import logging
import sys
import yaml
from pathlib import Path
from typing import Dict, Any, Optional
from click.core import ParameterSource
from pydantic import ValidationError

from dbsampler.core.anchor import parse_anchor_spec
from dbsampler.core.cancellation import CancellationToken
from dbsampler.core.catalog import MetadataCatalog
from dbsampler.core.database import DatabaseConnection, DatabaseConfig
from dbsampler.core.engine import SamplingEngine
from dbsampler.core.exceptions import DBSamplerError, ReplicationError
from dbsampler.core.models import SamplingConfig, VerificationReport
from dbsampler.core.replicator import SchemaReplicator
from dbsampler.core.verifier import SampleVerifier


# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def connection_options(func):
    """Options shared by every command that talks to a database."""
    options = [
        click.option('--driver', default='mysql', type=click.Choice(['mysql', 'postgresql', 'sqlite']),
                     help='Database driver'),
        click.option('--host', default='localhost', help='Database host'),
        click.option('--port', type=int, help='Database port (driver default if omitted)'),
        click.option('--user', default='root', help='Database username'),
        click.option('--password', default='root', help='Database password'),
        click.option('--database', default='',
                     help='Database to connect to; for sqlite, the directory holding one <schema>.db per schema'),
        click.option('--config', '-c', type=click.Path(exists=True),
                     help='Configuration file (JSON/YAML) supplying any option not given here'),
    ]
    for option in reversed(options):
        func = option(func)
    return func


@click.group()
@click.option('--verbose', '-v', is_flag=True, help='Enable verbose logging')
@click.option('--quiet', '-q', is_flag=True, help='Suppress non-error output')
def cli(verbose: bool, quiet: bool):
    """DBSampler - Copy a referentially closed sample of a database schema."""
    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)
    elif quiet:
        logging.getLogger().setLevel(logging.ERROR)


@cli.command()
@connection_options
@click.option('--target-schema', help='Schema to sample from')
@click.option('--sample-schema', help='Schema to create (default: sample_db_<unix-seconds>)')
@click.option('--anchor', help='Anchor rows: table (5 random rows) or table#column=v1,v2')
@click.option('--no-sample', help='Comma-separated list of tables to copy in full')
@click.option('--max-depth', type=int, help='Maximum relationship depth to follow')
@click.option('--timeout', type=float, help='Abort the run after this many seconds')
@click.option('--verify/--no-verify', default=True, help='Verify referential closure after sampling')
@click.option('--progress/--no-progress', default=True, help='Show progress bars')
def sample(**options):
    """Create a sample schema holding the anchor rows and everything they reference."""
    try:
        options = apply_config_file(click.get_current_context(), options)
        for required in ('target_schema', 'anchor'):
            if not options.get(required):
                raise click.UsageError(f"Missing option '--{required.replace('_', '-')}'")

        db_config = build_database_config(options)
        sampling_kwargs = dict(
            source_schema=options['target_schema'],
            anchor=options['anchor'],
            no_sample=options['no_sample'],
            max_depth=options['max_depth'],
            timeout_seconds=options['timeout'],
            verify=options['verify'],
            show_progress=options['progress'],
        )
        if options['sample_schema']:
            sampling_kwargs['sample_schema'] = options['sample_schema']
        sampling_config = SamplingConfig(**sampling_kwargs)
        anchor_spec = parse_anchor_spec(sampling_config.anchor)

        with DatabaseConnection(db_config) as db_conn:
            db_conn.attach_schema(sampling_config.source_schema, must_exist=True)
            catalog = MetadataCatalog(db_conn)

            click.echo(f"🏗️  Replicating {sampling_config.source_schema} into {sampling_config.sample_schema}...")
            replicator = SchemaReplicator(db_conn, catalog, show_progress=sampling_config.show_progress)
            try:
                replication = replicator.replicate(
                    sampling_config.source_schema,
                    sampling_config.sample_schema,
                    sampling_config.no_sample,
                )
            except ReplicationError:
                drop_partial_schema(replicator, sampling_config.sample_schema)
                raise
            click.echo(f"  ✅ {len(replication.tables_created)} tables, {len(replication.views_created)} views")
            for table, rows in replication.tables_copied.items():
                click.echo(f"  • {table}: {rows:,} rows copied in full")

            click.echo(f"\n🔗 Sampling from anchor {anchor_spec}...")
            engine = SamplingEngine(
                db_conn,
                sampling_config.source_schema,
                sampling_config.sample_schema,
                catalog=catalog,
                max_depth=sampling_config.max_depth,
                show_progress=sampling_config.show_progress,
            )
            stats = engine.sample(anchor_spec, CancellationToken(sampling_config.timeout_seconds))

            click.echo(f"\n📊 Sampling Summary:")
            click.echo(f"  Anchor rows: {stats.anchor_rows:,}")
            click.echo(f"  Rows inserted: {stats.rows_inserted:,}")
            click.echo(f"  Transactions: {stats.transactions_committed:,}")
            click.echo(f"  Total time: {stats.total_time_seconds:.2f}s")
            for table, rows in sorted(stats.table_stats.items()):
                click.echo(f"  • {table}: {rows:,} rows")
            if stats.degraded_tables:
                click.echo(f"  ⚠️  No primary key (matched on full row): {', '.join(stats.degraded_tables)}")

            if sampling_config.verify:
                click.echo(f"\n🔍 Verifying referential closure...")
                report = SampleVerifier(db_conn, catalog).verify(
                    sampling_config.source_schema, sampling_config.sample_schema
                )
                echo_report(report)

            click.echo(f"\n🎉 Sample schema {sampling_config.sample_schema} is ready")

    except KeyboardInterrupt:
        click.echo("\n\n⏹️  Operation cancelled by user")
        sys.exit(1)
    except (DBSamplerError, ValidationError, FileNotFoundError) as e:
        click.echo(f"\n❌ Error: {e}", err=True)
        sys.exit(1)


@cli.command()
@connection_options
@click.option('--target-schema', help='Schema the sample was taken from')
@click.option('--sample-schema', help='Sample schema to check')
def verify(**options):
    """Check that every foreign key in a sample schema has its parent row."""
    try:
        options = apply_config_file(click.get_current_context(), options)
        for required in ('target_schema', 'sample_schema'):
            if not options.get(required):
                raise click.UsageError(f"Missing option '--{required.replace('_', '-')}'")

        db_config = build_database_config(options)
        with DatabaseConnection(db_config) as db_conn:
            db_conn.attach_schema(options['target_schema'], must_exist=True)
            db_conn.attach_schema(options['sample_schema'], must_exist=True)
            report = SampleVerifier(db_conn).verify(options['target_schema'], options['sample_schema'])

        echo_report(report)
        if not report.is_consistent:
            sys.exit(1)

    except (DBSamplerError, ValidationError, FileNotFoundError) as e:
        click.echo(f"\n❌ Error: {e}", err=True)
        sys.exit(1)


@cli.command('parse-anchor')
@click.argument('anchor')
def parse_anchor(anchor: str):
    """Show how an anchor spec is interpreted."""
    try:
        spec = parse_anchor_spec(anchor)
    except DBSamplerError as e:
        click.echo(f"❌ Error: {e}", err=True)
        sys.exit(1)

    if spec.is_random:
        parsed = {'table': spec.table, 'selection': 'random', 'limit': spec.selection.limit}
    else:
        parsed = {
            'table': spec.table,
            'selection': 'explicit',
            'column': spec.selection.column,
            'values': list(spec.selection.values),
        }
    click.echo(json.dumps(parsed, indent=2))


def apply_config_file(ctx: click.Context, options: Dict[str, Any]) -> Dict[str, Any]:
    """Fill options left at their defaults from the ``--config`` file."""
    config_path = options.get('config')
    if not config_path:
        return options

    config_data = load_config_file(config_path) or {}
    if not isinstance(config_data, dict):
        raise click.BadParameter(f"{config_path} must contain a mapping", param_hint="'--config'")

    merged = dict(options)
    for key, value in config_data.items():
        name = key.replace('-', '_')
        if name not in merged or name == 'config':
            raise click.BadParameter(f"Unknown configuration key: {key}", param_hint="'--config'")
        if ctx.get_parameter_source(name) in (None, ParameterSource.DEFAULT):
            merged[name] = value
    logger.debug(f"Applied {len(config_data)} option(s) from {config_path}")
    return merged


def build_database_config(options: Dict[str, Any]) -> DatabaseConfig:
    return DatabaseConfig(
        driver=options['driver'],
        host=options['host'],
        port=options['port'],
        database=options['database'] or '',
        username=options['user'],
        password=options['password'],
    )


def drop_partial_schema(replicator: SchemaReplicator, schema: str) -> None:
    """Remove a half-built sample schema, letting the replication error propagate."""
    if schema not in replicator.created_schemas:
        return
    try:
        replicator.drop_schema(schema)
    except DBSamplerError as e:
        logger.error(f"Could not drop partially created schema {schema}: {e}")


def echo_report(report: VerificationReport) -> None:
    if report.is_consistent:
        click.echo(f"  ✅ Referential closure verified "
                   f"({report.tables_checked} tables, {report.edges_checked} foreign keys)")
        return
    click.echo(f"  ⚠️  Found {len(report.violations)} FK violations")
    for violation in report.violations:
        click.echo(f"    • {violation}")


def load_config_file(config_path: str) -> Dict[str, Any]:
    """Load configuration from JSON or YAML file."""
    config_file = Path(config_path)

    if not config_file.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_file, 'r') as f:
        if config_file.suffix.lower() == '.json':
            return json.load(f)
        else:
            return yaml.safe_load(f)


def main():
    """Main entry point for the CLI."""
    cli()


if __name__ == '__main__':
    main()
