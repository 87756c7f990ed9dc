"""
🎉 PROMO CODE MANAGEMENT HELPER
Create and manage promo codes straight against the database.

Usage:
    python manage_promocodes.py init-db
    python manage_promocodes.py create SAVE20 --percent 20 --max-uses 100 --expires 2026-12-31
    python manage_promocodes.py create TENOFF --fixed 10.00 --min-purchase 50
    python manage_promocodes.py list
    python manage_promocodes.py deactivate SAVE20
    python manage_promocodes.py activate SAVE20
    python manage_promocodes.py delete SAVE20
    python manage_promocodes.py stats [SAVE20]
"""
from datetime import timedelta

import click

from promo_engine import database
from promo_engine.api.serializers import discount_label
from promo_engine.errors import PromoCodeExists, PromoCodeNotFound, PromoCodeInUse, InvalidLimits
from promo_engine.models.promo_code import DiscountType
from promo_engine.money import Money, MoneyFormatError, parse_percentage
from promo_engine.services import admin as admin_service
from promo_engine.services import stats as stats_service
from promo_engine.timeutils import parse_iso8601, utcnow


def _session_factory():
    return database.SessionLocal


def _money_option(ctx, param, value):
    if value is None:
        return None
    try:
        return Money.parse(value)
    except MoneyFormatError as e:
        raise click.BadParameter(str(e))


def _percent_option(ctx, param, value):
    if value is None:
        return None
    try:
        return parse_percentage(value)
    except MoneyFormatError as e:
        raise click.BadParameter(str(e))


def _date_option(ctx, param, value):
    if value is None:
        return None
    try:
        parsed = parse_iso8601(value)
    except ValueError:
        raise click.BadParameter("use YYYY-MM-DD or YYYY-MM-DDTHH:MM:SS")
    if param.name == "expires" and len(value.strip()) == 10:
        # a bare date stays valid through the whole day
        parsed += timedelta(days=1, microseconds=-1)
    return parsed


@click.group()
def cli():
    """Promo code administration."""


@cli.command("init-db")
def init_db():
    """Create the promo tables."""
    database.init_db()
    click.echo("✅ Tables ready")


@cli.command("create")
@click.argument("code")
@click.option("--percent", callback=_percent_option, help="Percentage off, e.g. 20 or 12.5")
@click.option("--fixed", callback=_money_option, help="Fixed amount off, e.g. 10.00")
@click.option("--description")
@click.option("--min-purchase", callback=_money_option)
@click.option("--max-uses", type=click.IntRange(min=1))
@click.option("--max-uses-per-user", type=click.IntRange(min=1), default=1, show_default=True)
@click.option("--starts", callback=_date_option)
@click.option("--expires", callback=_date_option, help="Last valid moment (UTC); a bare date covers the whole day")
@click.option("--template-id", type=int)
@click.option("--creator-id", type=int)
def create(code, percent, fixed, description, min_purchase, max_uses, max_uses_per_user, starts, expires, template_id, creator_id):
    """Create a new promo code."""
    if (percent is None) == (fixed is None):
        raise click.UsageError("pass exactly one of --percent or --fixed")

    if percent is not None:
        discount_type, amount = DiscountType.PERCENTAGE, percent
    else:
        discount_type, amount = DiscountType.FIXED, fixed.cents

    db = _session_factory()()
    try:
        promo = admin_service.create_promo_code(
            db,
            code=code,
            discount_type=discount_type,
            discount_amount=amount,
            description=description,
            minimum_purchase=min_purchase,
            max_uses=max_uses,
            max_uses_per_user=max_uses_per_user,
            valid_from=starts,
            valid_until=expires,
            template_id=template_id,
            creator_id=creator_id,
            created_by="cli",
        )
    except PromoCodeExists:
        raise click.ClickException(f"Promo code '{code.upper()}' already exists")
    except InvalidLimits as e:
        raise click.ClickException(str(e))
    finally:
        db.close()

    click.echo("✅ Promo code created successfully!")
    click.echo(f"   Code:      {promo.code}")
    click.echo(f"   Discount:  {discount_label(promo)}")
    click.echo(f"   Max Uses:  {promo.max_uses if promo.max_uses else 'Unlimited'}")
    click.echo(f"   Expires:   {promo.valid_until.isoformat() if promo.valid_until else 'Never'}")


@cli.command("list")
def list_codes():
    """List all promo codes."""
    db = _session_factory()()
    try:
        promos = admin_service.list_promo_codes(db)
    finally:
        db.close()

    if not promos:
        click.echo("No promo codes found.")
        return

    now = utcnow()
    click.echo(f"{'Code':<20} {'Discount':<10} {'Uses':<15} {'Status':<10} {'Expires':<12}")
    click.echo("-" * 70)
    for p in promos:
        if not p.is_active:
            status = "inactive"
        elif p.is_expired(now):
            status = "expired"
        elif p.is_maxed_out:
            status = "maxed"
        else:
            status = "active"
        uses = f"{p.used_count}/{p.max_uses}" if p.max_uses else f"{p.used_count}/∞"
        expires = p.valid_until.strftime("%Y-%m-%d") if p.valid_until else "Never"
        click.echo(f"{p.code:<20} {discount_label(p):<10} {uses:<15} {status:<10} {expires:<12}")


def _toggle(code, active):
    db = _session_factory()()
    try:
        promo = admin_service.set_active(db, code, active)
    except PromoCodeNotFound:
        raise click.ClickException(f"Promo code '{code}' not found")
    finally:
        db.close()
    click.echo(f"✅ Promo code '{promo.code}' has been {'activated' if active else 'deactivated'}")


@cli.command("activate")
@click.argument("code")
def activate(code):
    _toggle(code, True)


@cli.command("deactivate")
@click.argument("code")
def deactivate(code):
    _toggle(code, False)


@cli.command("delete")
@click.argument("code")
def delete(code):
    """Delete a promo code that has never been redeemed."""
    db = _session_factory()()
    try:
        admin_service.delete_promo_code(db, code)
    except PromoCodeNotFound:
        raise click.ClickException(f"Promo code '{code}' not found")
    except PromoCodeInUse as e:
        raise click.ClickException(str(e))
    finally:
        db.close()
    click.echo(f"✅ Promo code '{code.upper()}' has been deleted")


@cli.command("stats")
@click.argument("code", required=False)
@click.option("--top", type=click.IntRange(min=1), default=10, show_default=True)
def stats(code, top):
    """Overall statistics, or details for one CODE."""
    db = _session_factory()()
    try:
        if code:
            try:
                s = stats_service.get_code_stats(db, code)
            except PromoCodeNotFound:
                raise click.ClickException(f"Promo code '{code}' not found")
            click.echo(f"\n📊 PROMO CODE STATS: {s.code}\n")
            click.echo(f"Status:          {'Active' if s.is_active else 'Inactive'}")
            click.echo(f"Used Count:      {s.used_count}")
            click.echo(f"Max Uses:        {s.max_uses if s.max_uses else 'Unlimited'}")
            if s.max_uses:
                click.echo(f"Usage:           {s.usage_percentage:.1f}% ({s.remaining_uses} remaining)")
            click.echo(f"Distinct Users:  {s.distinct_users}")
            click.echo(f"Total Discount:  {s.total_discount}")
            click.echo(f"Expired:         {'Yes' if s.is_expired else 'No'}")
            return

        overall = stats_service.get_stats(db, top_n=top)
    finally:
        db.close()

    click.echo(f"Total codes:          {overall.total_codes}")
    click.echo(f"Active codes:         {overall.active_codes}")
    click.echo(f"Total redemptions:    {overall.total_redemptions}")
    click.echo(f"Total discount given: {overall.total_discount_given}")
    for t in overall.top_codes:
        click.echo(f"  {t.code:<20} {t.uses:>6} uses  {t.total_discount}")


if __name__ == "__main__":
    cli()
