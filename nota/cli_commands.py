"""
Flask CLI commands.

Commands:
- flask init-db: Create the schema (optionally dropping it first)
- flask set-counter VALUE: Overwrite the nota counter
"""

import click
from flask import current_app
from nota.database import db_session, create_schema, drop_schema
from nota.models import Setting, TRANSACTION_COUNTER_KEY
from nota.services.transaction_sequencer import TransactionSequencer


def init_cli_commands(app):
    """Register CLI commands with Flask app."""

    @app.cli.command('init-db')
    @click.option('--drop', is_flag=True, help='Drop every table first')
    def init_db_command(drop):
        """Create all tables."""
        if drop:
            click.confirm('Semua data akan dihapus. Lanjutkan?', abort=True)
            drop_schema()
            click.echo(click.style('Tabel lama dihapus.', fg='yellow'))
        create_schema()
        click.echo(click.style('Skema database siap.', fg='green', bold=True))

    @app.cli.command('set-counter')
    @click.argument('value')
    def set_counter(value):
        """Set the transaction counter; the next nota gets VALUE."""
        value = value.strip()
        if not value.isdigit():
            click.echo(click.style(f'Nilai counter harus berupa angka: {value}', fg='red'))
            raise SystemExit(1)

        try:
            setting = db_session.query(Setting).filter(Setting.key == TRANSACTION_COUNTER_KEY).first()
            if setting:
                previous = setting.value
                setting.value = value
            else:
                previous = None
                db_session.add(Setting(key=TRANSACTION_COUNTER_KEY, value=value))
            db_session.commit()
        except Exception as e:
            db_session.rollback()
            click.echo(click.style(f'Gagal menyimpan counter: {e}', fg='red'))
            raise SystemExit(1)

        sequencer = TransactionSequencer.from_config(current_app.config)
        click.echo(click.style('Counter diperbarui.', fg='green', bold=True))
        click.echo(f'   Sebelumnya: {previous or "-"}')
        click.echo(f'   Nota berikutnya: {sequencer.format_number(value)}')
