"""Administrative CLI commands."""
from click.testing import CliRunner
from sqlalchemy import select

from careflow.cli import cli
from careflow.db.models import Tenant, User


def test_create_tenant_and_interpreter(db):
    runner = CliRunner()

    result = runner.invoke(
        cli, ["create-tenant", "--name", "Riverside Clinic", "--interpreter-review", "optional"]
    )
    assert result.exit_code == 0, result.output
    assert "riverside-clinic" in result.output

    result = runner.invoke(
        cli,
        [
            "create-user",
            "--email", "Ana@Clinic.org",
            "--name", "Ana",
            "--role", "interpreter",
            "--tenant-slug", "riverside-clinic",
            "--language", "es",
            "--language", "pt",
        ],
    )
    assert result.exit_code == 0, result.output

    tenant = db.execute(select(Tenant).where(Tenant.slug == "riverside-clinic")).scalar_one()
    assert tenant.interpreter_review_mode == "optional"
    user = db.execute(select(User).where(User.email == "ana@clinic.org")).scalar_one()
    assert user.tenant_id == tenant.id
    assert user.languages == ["es", "pt"]


def test_create_user_rejects_languages_for_clinician(db, tenant):
    result = CliRunner().invoke(
        cli,
        [
            "create-user",
            "--email", "doc@clinic.org",
            "--name", "Doc",
            "--role", "clinician",
            "--tenant-slug", tenant.slug,
            "--language", "es",
        ],
    )

    assert result.exit_code != 0
    assert "Only interpreters" in result.output


def test_unknown_tenant_slug(db):
    result = CliRunner().invoke(
        cli,
        ["create-user", "--email", "a@b.org", "--name", "A", "--role", "admin", "--tenant-slug", "nope"],
    )

    assert result.exit_code != 0
    assert "Tenant not found" in result.output


def test_revoke_sessions_bumps_token_version(db, clinician):
    before = clinician.token_version

    result = CliRunner().invoke(cli, ["revoke-sessions", "--email", clinician.email])

    assert result.exit_code == 0, result.output
    db.refresh(clinician)
    assert clinician.token_version == before + 1


def test_complete_due_plans_with_nothing_due(db):
    result = CliRunner().invoke(cli, ["complete-due-plans"])

    assert result.exit_code == 0, result.output
    assert "Completed 0 care plan(s)" in result.output
