"""
Command line maintenance tasks: schema setup, log retention (meant for cron),
statistics and mapping inspection.
"""
import logging
import click
from redirect_counter.config import settings
from redirect_counter.persistence.db import TenantRegistry
from redirect_counter.services.eventlog import EventLogger
from redirect_counter.services.mappings import MappingService
from redirect_counter.services.options import load_options
from redirect_counter.services.statistics import StatisticsService


def _tenants(registry: TenantRegistry, tenant: str | None) -> list[str]:
    if tenant is None:
        return registry.names()
    if registry.get(tenant) is None:
        raise click.BadParameter(f"Unknown tenant '{tenant}'", param_hint="--tenant")
    return [tenant]


@click.group()
@click.option("--verbose", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, verbose: bool) -> None:
    """Subdomain Redirect Counter maintenance commands."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if ctx.obj is None:
        ctx.obj = TenantRegistry(settings)
    ctx.call_on_close(ctx.obj.dispose)


@cli.command("init-db")
@click.pass_obj
def init_db(registry: TenantRegistry) -> None:
    """Create tables and default settings for every tenant."""
    registry.init_all()
    for name in registry.names():
        click.echo(f"[INFO] {name}: {registry.get(name).db_path}")


@cli.command("prune-logs")
@click.option("--tenant", "-t", default=None, help="Only this tenant (default: all)")
@click.option("--days", type=int, default=None,
              help="Delete entries older than this many days instead of the configured retention")
@click.pass_obj
def prune_logs(registry: TenantRegistry, tenant: str | None, days: int | None) -> None:
    """Apply log retention. Safe to re-run."""
    if days is not None and days < 1:
        raise click.BadParameter("must be at least 1", param_hint="--days")
    for name in _tenants(registry, tenant):
        with registry.session(name) as db:
            events = EventLogger(db, load_options(db))
            deleted = events.delete_older_than(days) if days else events.run_retention()
        click.echo(f"[INFO] {name}: deleted {deleted} log entries")


@cli.command("stats")
@click.option("--tenant", "-t", default=None, help="Only this tenant (default: all)")
@click.option("--top", "top_n", type=int, default=10, show_default=True, help="Number of keys to list")
@click.pass_obj
def stats(registry: TenantRegistry, tenant: str | None, top_n: int) -> None:
    """Show redirect counters."""
    for name in _tenants(registry, tenant):
        with registry.session(name) as db:
            service = StatisticsService(db)
            summary = service.summary()
            click.echo(f"{name}: {summary['total_redirects']} redirects over "
                       f"{summary['distinct_key_count']} keys (last: {summary['last_redirect_at'] or 'never'})")
            for s in service.top(top_n):
                click.echo(f"  {s.redirect_count:>8}  {s.key:<30} {s.target_path}")


@cli.command("reset-stats")
@click.option("--tenant", "-t", default=None, help="Only this tenant (default: all)")
@click.option("--key", "-k", default=None, help="Reset a single key instead of everything")
@click.confirmation_option(prompt="Reset redirect statistics?")
@click.pass_obj
def reset_stats(registry: TenantRegistry, tenant: str | None, key: str | None) -> None:
    """Delete redirect counters."""
    for name in _tenants(registry, tenant):
        with registry.session(name) as db:
            service = StatisticsService(db)
            if key:
                service.reset_one(key)
            else:
                service.reset_all()
        click.echo(f"[INFO] {name}: statistics reset")


@cli.command("mappings")
@click.option("--tenant", "-t", default=None, help="Only this tenant (default: all)")
@click.option("--active-only", is_flag=True, help="Hide inactive mappings")
@click.pass_obj
def mappings(registry: TenantRegistry, tenant: str | None, active_only: bool) -> None:
    """List subdomain mappings."""
    for name in _tenants(registry, tenant):
        with registry.session(name) as db:
            service = MappingService(db)
            total = service.total_count(active_only=active_only)
            click.echo(f"{name}: {total} mappings")
            for m in service.list(active_only=active_only, limit=max(total, 1)):
                data = m.to_dict()
                target = data["resource_id"] or data["redirect_url"] or "/"
                state = "" if m.active else " (inactive)"
                click.echo(f"  {m.subdomain:<30} {data['kind'] or '?':<9} {target} [{m.redirect_code}]{state}")


if __name__ == "__main__":
    cli()
