"""
Flask CLI commands for database setup and scheduled maintenance.

Commands:
- flask init-db: Create the tables
- flask expire-quotes: Daily sweep expiring quotes past their validity date
- flask clean-audit-logs: Delete audit rows older than the retention period
- flask reconcile-promotion-codes: Repair cached code counters from the ledger
"""

from datetime import date

import click
from flask import current_app
from quotedesk.database import create_all, get_session


def init_cli_commands(app):
    """Register CLI commands with Flask app."""

    @app.cli.command('init-db')
    def init_db_command():
        """Create every table (no-op for existing ones)."""
        create_all()
        click.echo(click.style('✅ Database tables created.', fg='green'))

    @app.cli.command('expire-quotes')
    @click.option('--today', type=click.DateTime(formats=['%Y-%m-%d']), default=None,
                  help='Reference day (default: today)')
    def expire_quotes(today):
        """Expire sent/viewed quotes whose validity date has passed."""
        from quotedesk.services.quote_lifecycle import expire_stale_quotes

        reference = today.date() if today else date.today()
        session = get_session()
        try:
            count = expire_stale_quotes(session, today=reference)
        except Exception as e:
            current_app.logger.error(f"[CLI] expire-quotes failed: {e}")
            click.echo(click.style(f'❌ Expiry sweep failed: {e}', fg='red'))
            raise SystemExit(1)
        finally:
            session.remove()

        click.echo(click.style(f'✅ {count} quote(s) expired.', fg='green'))

    @app.cli.command('clean-audit-logs')
    @click.option('--days', type=int, default=None, help='Retention in days (default: AUDIT_LOG_RETENTION_DAYS)')
    def clean_audit_logs(days):
        """Delete audit log rows older than the retention period."""
        from quotedesk.services.audit_service import purge_audit_logs

        retention = days if days is not None else current_app.config['AUDIT_LOG_RETENTION_DAYS']
        session = get_session()
        try:
            deleted = purge_audit_logs(session, retention)
        except Exception as e:
            current_app.logger.error(f"[CLI] clean-audit-logs failed: {e}")
            click.echo(click.style(f'❌ Cleanup failed: {e}', fg='red'))
            raise SystemExit(1)
        finally:
            session.remove()

        click.echo(click.style(f'✅ {deleted} audit row(s) deleted (retention {retention} days).', fg='green'))

    @app.cli.command('reconcile-promotion-codes')
    def reconcile_promotion_codes():
        """Recompute PromotionCode.uses from the redemption rows."""
        from quotedesk.services.redemption_ledger import reconcile_code_uses

        session = get_session()
        try:
            fixed = reconcile_code_uses(session)
        except Exception as e:
            current_app.logger.error(f"[CLI] reconcile-promotion-codes failed: {e}")
            click.echo(click.style(f'❌ Reconciliation failed: {e}', fg='red'))
            raise SystemExit(1)
        finally:
            session.remove()

        click.echo(click.style(f'✅ {fixed} code counter(s) corrected.', fg='green'))
