"""CLI tools for Careflow administration and scheduled jobs."""

import asyncio

import click

from careflow.core.errors import CareflowError
from careflow.db.enums import InterpreterReviewMode, Role
from careflow.db.session import SessionLocal


@click.group()
def cli():
    """Careflow CLI tools."""
    pass


@cli.command()
@click.option("--name", required=True, help="Clinic name")
@click.option("--slug", default=None, help="URL-friendly slug (derived from name if omitted)")
@click.option(
    "--interpreter-review",
    type=click.Choice([m.value for m in InterpreterReviewMode]),
    default=InterpreterReviewMode.REQUIRED.value,
    show_default=True,
)
@click.option("--demo", is_flag=True, help="Mark as a demo tenant")
def create_tenant(name: str, slug: str | None, interpreter_review: str, demo: bool):
    """
    Create a tenant (clinic).

    Example:
        careflow create-tenant --name "Riverside Clinic" --interpreter-review optional
    """
    from careflow.services import tenant_service

    db = SessionLocal()
    try:
        tenant = tenant_service.create_tenant(
            db,
            name=name,
            slug=slug,
            interpreter_review_mode=InterpreterReviewMode(interpreter_review),
            is_demo=demo,
        )
        click.echo(f"✓ Created tenant: {tenant.name}")
        click.echo(f"  ID: {tenant.id}")
        click.echo(f"  Slug: {tenant.slug}")
        click.echo(f"  Interpreter review: {tenant.interpreter_review_mode}")
    except CareflowError as e:
        raise click.ClickException(e.message)
    finally:
        db.close()


@cli.command()
@click.option("--email", required=True, help="User email address")
@click.option("--name", "display_name", required=True, help="Display name")
@click.option("--role", type=click.Choice([r.value for r in Role]), required=True)
@click.option("--tenant-slug", default=None, help="Tenant slug (omit for super_admin)")
@click.option("--language", "languages", multiple=True, help="Interpreter language code (repeatable)")
def create_user(email: str, display_name: str, role: str, tenant_slug: str | None, languages: tuple):
    """
    Create a staff account.

    Example:
        careflow create-user --email ana@clinic.org --name "Ana" --role interpreter \\
            --tenant-slug riverside-clinic --language es --language pt
    """
    from careflow.services import tenant_service

    db = SessionLocal()
    try:
        tenant_id = None
        if tenant_slug:
            tenant = tenant_service.get_tenant_by_slug(db, tenant_slug)
            if tenant is None:
                raise click.ClickException(f"Tenant not found: {tenant_slug}")
            tenant_id = tenant.id

        user = tenant_service.create_user(
            db,
            email=email,
            display_name=display_name,
            role=Role(role),
            tenant_id=tenant_id,
            languages=list(languages),
        )
        click.echo(f"✓ Created {user.role}: {user.email}")
        click.echo(f"  ID: {user.id}")
        if user.languages:
            click.echo(f"  Languages: {', '.join(user.languages)}")
    except CareflowError as e:
        raise click.ClickException(e.message)
    finally:
        db.close()


@cli.command()
@click.option("--email", required=True, help="User email to revoke sessions for")
def revoke_sessions(email: str):
    """Revoke all sessions for a user by bumping their token_version."""
    from careflow.services import tenant_service

    db = SessionLocal()
    try:
        user = tenant_service.get_user_by_email(db, email)
        if not user:
            raise click.ClickException(f"User not found: {email}")

        old_version = user.token_version
        user.token_version += 1
        db.commit()

        click.echo(f"✓ Revoked all sessions for {email}")
        click.echo(f"  Token version: {old_version} → {user.token_version}")
    finally:
        db.close()


@cli.command()
@click.option("--email", required=True, help="User to issue a session for")
def issue_session(email: str):
    """Print a session token for local development (dev only)."""
    from careflow.core.config import settings
    from careflow.core.security import create_session_token
    from careflow.services import tenant_service

    if settings.ENV != "dev":
        raise click.ClickException("issue-session is only available when ENV=dev")

    db = SessionLocal()
    try:
        user = tenant_service.get_user_by_email(db, email)
        if not user:
            raise click.ClickException(f"User not found: {email}")
        click.echo(
            create_session_token(user.id, user.tenant_id, user.role, user.token_version)
        )
    finally:
        db.close()


@cli.command()
def complete_due_plans():
    """Complete sent care plans that the completion policy marks eligible."""
    from careflow.services import care_plan_service

    db = SessionLocal()
    try:
        completed = care_plan_service.complete_due_plans(db)
        click.echo(f"✓ Completed {completed} care plan(s)")
    finally:
        db.close()


@cli.command()
def dispatch_check_ins():
    """Send notifications for every due check-in."""
    from careflow.services import check_in_service
    from careflow.services.notification_service import HttpNotifier

    db = SessionLocal()
    try:
        sent = asyncio.run(check_in_service.dispatch_due_check_ins(db, HttpNotifier()))
        click.echo(f"✓ Sent {sent} check-in notification(s)")
    finally:
        db.close()


if __name__ == "__main__":
    cli()
