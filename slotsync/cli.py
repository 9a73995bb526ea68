"""CLI tools for slotsync administration."""

import asyncio
from uuid import UUID

import click

from slotsync.core.errors import SchedulingError
from slotsync.db.session import SessionLocal


@click.group()
def cli():
    """slotsync CLI tools."""
    pass


@cli.command()
def init_db():
    """
    Create all tables directly from the models.

    For local development only; deployed databases use alembic migrations.
    """
    from slotsync.db.base import Base
    from slotsync.db import models  # noqa: F401 - registers tables
    from slotsync.db.session import engine

    Base.metadata.create_all(bind=engine)
    click.echo("✓ Tables created")


@cli.command()
@click.option("--provider-id", required=True, type=click.UUID, help="Provider user id")
@click.option("--timezone", "timezone_name", default="UTC", help="IANA timezone name")
def init_availability(provider_id: UUID, timezone_name: str):
    """
    Create the default availability template for a provider.

    Example:
        slotsync-cli init-availability --provider-id <uuid> --timezone America/New_York
    """
    from slotsync.services import availability_service

    db = SessionLocal()
    try:
        rules = availability_service.initialize_rules(db, provider_id, timezone_name)
        click.echo(f"✓ Availability ready for {provider_id} ({rules.timezone})")
        click.echo(f"  Appointment types: {', '.join(t.name for t in rules.appointment_types)}")
    except SchedulingError as e:
        db.rollback()
        click.echo(f"❌ Error: {e}")
    finally:
        db.close()


@cli.command()
@click.option("--provider-id", required=True, type=click.UUID, help="Provider user id")
@click.option("--start", "start_date", required=True, type=click.DateTime(["%Y-%m-%d"]))
@click.option("--end", "end_date", required=True, type=click.DateTime(["%Y-%m-%d"]))
@click.option("--type", "type_name", default=None, help="Appointment type name")
@click.option("--include-weekends", is_flag=True, default=False)
def generate_slots(provider_id: UUID, start_date, end_date, type_name, include_weekends):
    """Generate available slots for a provider over an inclusive date range."""
    from slotsync.services import slot_service

    db = SessionLocal()
    try:
        slots = slot_service.generate_slots(
            db,
            provider_id,
            start_date.date(),
            end_date.date(),
            appointment_type_name=type_name,
            include_weekends=include_weekends,
        )
        click.echo(f"✓ Created {len(slots)} slots")
    except SchedulingError as e:
        db.rollback()
        click.echo(f"❌ Error: {e}")
    finally:
        db.close()


@cli.command()
def renew_channels():
    """Renew every webhook channel expiring within the renewal threshold."""
    from slotsync.services.renewal_scheduler import RenewalScheduler, summarize

    summary = summarize(asyncio.run(RenewalScheduler().run_once()))
    click.echo(
        f"✓ Checked {summary['checked']} channels: "
        f"{summary['renewed']} renewed, {summary['fresh']} fresh, {summary['failed']} failed"
    )


@cli.command()
def reconcile():
    """Retry calendar mirroring for appointments left pending."""
    from slotsync.services import calendar_service, calendar_sync_service

    totals = asyncio.run(
        calendar_sync_service.reconcile_all(SessionLocal, calendar_service.get_calendar_client)
    )
    click.echo(
        f"✓ {totals['providers']} providers: "
        f"{totals['repaired']} repaired, {totals['still_pending']} still pending"
    )


@cli.command()
def channel_health():
    """Show webhook channel health across providers."""
    from slotsync.services import webhook_channel_service

    db = SessionLocal()
    try:
        health = webhook_channel_service.get_channel_health(db)
    finally:
        db.close()
    marker = "✓" if health["healthy"] else "⚠"
    click.echo(f"{marker} {health['total_channels']} channels")
    click.echo(f"  Expiring within 24h: {health['expiring_soon']}")
    click.echo(f"  Expired: {health['expired']}")
    click.echo(f"  Stale (no sync in 24h): {health['stale']}")


if __name__ == "__main__":
    cli()
