#!/usr/bin/env python3
"""
Google Voice Takeout Archiver - CLI Interface

Converts the HTML documents of a Google Voice Takeout export into JSON lines
or a SQLite database, and browses the reconciled participant groups of a
converted database.
"""

import json
import logging
from pathlib import Path
from typing import List

import click
from pydantic import ValidationError

from core.app_config import AppConfig, create_config
from core.models import Group, format_timestamp, parse_group_key

logger = logging.getLogger(__name__)


def setup_logging(config: AppConfig) -> None:
    """
    Set up thread-safe logging based on configuration.

    Console output goes to stderr so JSON written to stdout stays clean.
    """
    from utils.thread_safe_logging import setup_thread_safe_logging, shutdown_logging

    log_level = getattr(logging, config.effective_log_level)
    log_file = config.get_log_file_path()

    setup_thread_safe_logging(
        log_level=log_level,
        log_file=log_file,
        console_logging=True,
        include_thread_name=config.debug,
    )
    click.get_current_context().call_on_close(shutdown_logging)

    logger.debug(f"Log level: {logging.getLevelName(log_level)}")
    if log_file:
        logger.debug(f"Log file: {log_file}")


def open_store(config: AppConfig):
    """Open the converted database, failing with a usage hint when it is missing."""
    from core.takeout_store import ConversationStore

    if not config.database_path.exists():
        raise click.ClickException(
            f"Database not found: {config.database_path}\n"
            f"Run 'gvoice-archive convert --format sqlite' first"
        )
    return ConversationStore(config.database_path)


def group_to_dict(group: Group, include_messages: bool = True) -> dict:
    data = {
        'key': group.key,
        'type': group.type.value if group.type else "",
        'timestamp': format_timestamp(group.timestamp),
        'last_conversation_id': group.last_conversation_id,
        'conversation_ids': list(group.conversation_ids),
        'participants': [
            {'id': contact.id, 'name': contact.name, 'phone_number': contact.phone_number}
            for contact in group.participants
        ],
        'message_count': len(group.messages),
    }
    if include_messages:
        data['messages'] = [
            {
                'conversation_id': message.conversation_id,
                'timestamp': format_timestamp(message.timestamp),
                'sender': message.sender_name,
                'sender_number': message.sender_number,
                'content': message.content,
                'images': list(message.images),
            }
            for message in group.messages
        ]
    return data


def describe_participants(group: Group) -> str:
    return ", ".join(
        f"{contact.name} ({contact.phone_number})" if contact.phone_number else contact.name
        for contact in group.participants
    )


@click.group()
@click.option(
    '--processing-dir',
    type=click.Path(exists=False, file_okay=False, dir_okay=True, path_type=Path),
    default=None,
    help="Directory containing the Google Voice export (default: current directory)"
)
@click.option(
    '--database',
    'database_path',
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="SQLite database path (default: conversations.db)"
)
@click.option(
    '--log-level',
    type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']),
    default=None,
    help="Logging level (default: INFO)"
)
@click.option(
    '--log-filename',
    type=str,
    default=None,
    help="Also write the log to this file"
)
@click.option(
    '--verbose/--no-verbose',
    default=None,
    help="Enable verbose logging (INFO level) (default: disabled)"
)
@click.option(
    '--debug/--no-debug',
    default=None,
    help="Enable debug logging (DEBUG level) (default: disabled)"
)
@click.pass_context
def cli(ctx, **kwargs):
    """Google Voice Takeout Archiver."""
    ctx.ensure_object(dict)

    try:
        ctx.obj['config'] = create_config(**kwargs)
    except ValidationError as e:
        click.echo(f"Configuration error: {e}", err=True)
        raise click.Abort()


@cli.command()
@click.option(
    '--format', 'output_format',
    type=click.Choice(['json', 'sqlite']),
    default=None,
    help="Output format (default: json)"
)
@click.option(
    '--output', 'output_file',
    type=str,
    default=None,
    help="JSON output file, '-' for standard output (default: -)"
)
@click.option(
    '--database',
    'database_path',
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="SQLite database written by --format sqlite"
)
@click.option(
    '--capture-media/--no-capture-media',
    default=None,
    help="Store attachment bytes in the database (default: enabled)"
)
@click.option(
    '--media-dir',
    type=click.Path(exists=True, file_okay=False, dir_okay=True, path_type=Path),
    default=None,
    help="Directory searched for attachments (default: processing dir)"
)
@click.option(
    '--max-workers',
    type=click.IntRange(1, 32),
    default=None,
    help="Worker threads used for extraction (default: 4)"
)
@click.pass_context
def convert(ctx, **kwargs):
    """Convert the export's HTML documents to JSON lines or SQLite."""
    settings = ctx.obj['config'].model_dump()
    settings.update({key: value for key, value in kwargs.items() if value is not None})
    try:
        config = create_config(**settings)
    except ValidationError as e:
        raise click.UsageError(str(e))

    setup_logging(config)
    err = config.writes_to_stdout

    from core.pipeline import PipelineManager
    from core.pipeline.stages import (
        ContentExtractionStage,
        ConversationStorageStage,
        FileDiscoveryStage,
        JsonExportStage,
    )
    from core.reconciler import reconcile

    problems = config.get_validation_errors()
    if problems:
        for problem in problems:
            click.echo(f"❌ {problem}", err=True)
        ctx.exit(1)

    manager = PipelineManager(processing_dir=config.processing_dir)
    manager.register_stages([
        FileDiscoveryStage(),
        ContentExtractionStage(max_workers=config.max_workers),
    ])
    if config.output_format == 'sqlite':
        media_dir = config.effective_media_dir if config.capture_media else None
        manager.register_stage(ConversationStorageStage(config.database_path, media_dir=media_dir))
    else:
        manager.register_stage(JsonExportStage(output=config.output_file))

    click.echo(f"🚀 Converting {config.processing_dir} ({config.output_format})...", err=err)

    try:
        context = manager.create_context(config)
        results = manager.execute_pipeline(context=context)
    except Exception as e:
        logger.error(f"Conversion failed: {e}", exc_info=config.debug)
        click.echo(f"❌ Conversion failed: {e}", err=True)
        ctx.exit(1)

    failed = [name for name, result in results.items() if not result.success]
    if failed:
        click.echo("❌ Conversion failed:", err=True)
        for name in failed:
            for error in results[name].errors:
                click.echo(f"   {error}", err=True)
        ctx.exit(1)

    extraction = results['content_extraction'].metadata
    click.echo("✅ Conversion completed!", err=err)
    click.echo(f"   📁 Files: {results['file_discovery'].metadata['total_files']}", err=err)
    click.echo(f"   💬 Conversations: {extraction['conversations_extracted']}", err=err)
    click.echo(f"   📝 Messages: {extraction['total_messages']}", err=err)
    for type_name, count in sorted(extraction['type_counts'].items()):
        click.echo(f"      {type_name}: {count}", err=err)
    if extraction['extraction_errors']:
        click.echo(f"   ⚠️  Skipped files: {extraction['extraction_errors']}", err=err)

    if config.output_format == 'sqlite':
        storage = results['conversation_storage']
        click.echo(f"   💾 Database: {config.database_path}", err=err)
        if storage.errors:
            click.echo(f"   ⚠️  Storage errors: {len(storage.errors)}", err=err)
    else:
        conversations = context.stage_output('content_extraction', 'conversations')
        groups = reconcile(conversations)
        click.echo(f"   👥 Groups: {len(groups)}", err=err)
        if not config.writes_to_stdout:
            click.echo(f"   💾 Output: {config.output_file}", err=err)


@cli.command()
@click.option('--json', 'as_json', is_flag=True, help="Print groups as JSON lines")
@click.option('--messages/--no-messages', default=False, help="Include merged messages (default: disabled)")
@click.pass_context
def groups(ctx, as_json, messages):
    """List participant groups, most recent first."""
    config = ctx.obj['config']
    setup_logging(config)

    from core.reconciler import Reconciler

    with open_store(config) as store:
        found = Reconciler(store).list_groups(include_messages=messages or as_json)

    if as_json:
        for group in found:
            click.echo(json.dumps(group_to_dict(group, include_messages=messages), ensure_ascii=False))
        return

    if not found:
        click.echo("No groups found")
        return

    for group in found:
        timestamp = format_timestamp(group.timestamp) or "-"
        kind = group.type.value if group.type else "-"
        click.echo(f"[{group.key}] {describe_participants(group)}")
        click.echo(
            f"   {kind} at {timestamp}, {len(group.conversation_ids)} conversation(s)"
            + (f", {len(group.messages)} message(s)" if messages else "")
        )


@cli.command()
@click.argument('key')
@click.option('--json', 'as_json', is_flag=True, help="Print the group as JSON")
@click.pass_context
def group(ctx, key, as_json):
    """Show the merged messages of the group with contact ids KEY (e.g. 3,7,12)."""
    config = ctx.obj['config']

    try:
        contact_ids = parse_group_key(key)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="KEY")

    setup_logging(config)

    from core.reconciler import Reconciler

    with open_store(config) as store:
        found = Reconciler(store).messages_for_group(contact_ids)

    if as_json:
        click.echo(json.dumps(group_to_dict(found), ensure_ascii=False))
        return

    if not found.conversation_ids:
        click.echo(f"No conversations with exactly the participants {found.key}")
        return

    click.echo(f"[{found.key}] {describe_participants(found)}")
    click.echo(f"   {len(found.conversation_ids)} conversation(s), {len(found.messages)} message(s)")
    for message in found.messages:
        timestamp = format_timestamp(message.timestamp) or "-"
        click.echo(f"{timestamp} {message.sender_name}: {message.content}")
        for image in message.images:
            click.echo(f"   🖼️  {image}")


@cli.command()
@click.argument('term', required=False, default="")
@click.option('--limit', type=click.IntRange(min=1), default=20, help="Maximum results (default: 20)")
@click.option('--offset', type=click.IntRange(min=0), default=0, help="Results to skip (default: 0)")
@click.pass_context
def search(ctx, term, limit, offset):
    """Search conversations by text, transcript or participant."""
    config = ctx.obj['config']
    setup_logging(config)

    with open_store(config) as store:
        total = store.count_conversations(term)
        found = store.search_conversations(term, limit=limit, offset=offset)
        previews = [store.conversation_preview(conversation) for conversation in found]

    click.echo(f"🔍 {total} conversation(s) match {term!r}")
    for conversation, preview in zip(found, previews):
        timestamp = format_timestamp(conversation.timestamp) or "-"
        names = ", ".join(conversation.participants) or "-"
        click.echo(f"#{conversation.id} {conversation.type.value} {timestamp} {names}")
        for line in preview.splitlines():
            click.echo(f"   {line}")

    shown = offset + len(found)
    if shown < total:
        click.echo(f"   ... {total - shown} more (use --offset {shown})")


@cli.command()
@click.pass_context
def validate(ctx):
    """Validate the configuration and the export directory."""
    config = ctx.obj['config']
    setup_logging(config)

    click.echo("🔍 Validating configuration...")
    click.echo(f"   Processing directory: {config.processing_dir}")
    click.echo(f"   Output format: {config.output_format}")
    click.echo(f"   Database: {config.database_path}")
    click.echo(f"   Log level: {config.effective_log_level}")

    problems: List[str] = config.get_validation_errors()
    if problems:
        click.echo("❌ Validation failed:")
        for problem in problems:
            click.echo(f"   {problem}")
        ctx.exit(1)

    html_count = sum(1 for _ in config.processing_dir.rglob("*.html"))
    click.echo(f"✅ Configuration is valid ({html_count} HTML files found)")


if __name__ == '__main__':
    cli()
