"""Baseline migration - tenants, staff, patients, care plans, check-ins, audit

Revision ID: 0001_baseline
Revises:
Create Date: 2026-10-19

Fresh baseline for Careflow. PostgreSQL only.
"""
from typing import Sequence, Union

from alembic import op


# revision identifiers, used by Alembic.
revision: str = '0001_baseline'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create all tables."""

    op.execute('CREATE EXTENSION IF NOT EXISTS pgcrypto')  # For gen_random_uuid()

    # ==========================================================================
    # Tenants
    # ==========================================================================
    op.execute('''
        CREATE TABLE tenants (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            name VARCHAR(255) NOT NULL,
            slug VARCHAR(100) UNIQUE NOT NULL,
            is_demo BOOLEAN NOT NULL DEFAULT false,
            interpreter_review_mode VARCHAR(20) NOT NULL DEFAULT 'required',
            contact_email VARCHAR(255),
            contact_phone VARCHAR(50),
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT ck_tenants_review_mode
                CHECK (interpreter_review_mode IN ('disabled', 'optional', 'required'))
        )
    ''')

    # ==========================================================================
    # Users (staff)
    # ==========================================================================
    op.execute('''
        CREATE TABLE users (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            email VARCHAR(255) UNIQUE NOT NULL,
            display_name VARCHAR(255) NOT NULL,
            role VARCHAR(20) NOT NULL,
            tenant_id UUID REFERENCES tenants(id) ON DELETE CASCADE,
            languages JSONB NOT NULL DEFAULT '[]'::jsonb,
            is_active BOOLEAN NOT NULL DEFAULT true,
            token_version INTEGER NOT NULL DEFAULT 1,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT ck_users_tenant_membership
                CHECK ((role = 'super_admin') = (tenant_id IS NULL))
        )
    ''')
    op.execute('CREATE INDEX idx_users_tenant_role ON users(tenant_id, role)')

    # ==========================================================================
    # Patients
    # ==========================================================================
    op.execute('''
        CREATE TABLE patients (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            tenant_id UUID NOT NULL REFERENCES tenants(id) ON DELETE CASCADE,
            name VARCHAR(200) NOT NULL,
            last_name VARCHAR(100),
            email VARCHAR(255) NOT NULL,
            phone VARCHAR(50),
            year_of_birth INTEGER,
            preferred_language VARCHAR(10) NOT NULL DEFAULT 'en',
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT uq_patients_tenant_email UNIQUE (tenant_id, email)
        )
    ''')

    # ==========================================================================
    # Care plans
    # ==========================================================================
    op.execute('''
        CREATE TABLE care_plans (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            tenant_id UUID NOT NULL REFERENCES tenants(id) ON DELETE CASCADE,
            clinician_id UUID NOT NULL REFERENCES users(id) ON DELETE RESTRICT,
            patient_id UUID REFERENCES patients(id) ON DELETE SET NULL,
            status VARCHAR(30) NOT NULL DEFAULT 'draft',

            source_file_name VARCHAR(255),
            source_content TEXT,

            diagnosis TEXT,
            instructions TEXT,
            warnings TEXT,
            medications JSONB,
            appointments JSONB,

            simplified_diagnosis TEXT,
            simplified_instructions TEXT,
            simplified_warnings TEXT,
            simplified_medications JSONB,
            simplified_appointments JSONB,

            translated_language VARCHAR(10),
            translated_diagnosis TEXT,
            translated_instructions TEXT,
            translated_warnings TEXT,
            translated_medications JSONB,
            translated_appointments JSONB,

            back_translated_diagnosis TEXT,
            back_translated_instructions TEXT,
            back_translated_warnings TEXT,

            interpreter_reviewed_by_id UUID REFERENCES users(id) ON DELETE SET NULL,
            interpreter_reviewed_at TIMESTAMPTZ,
            interpreter_notes TEXT,

            approved_by_id UUID REFERENCES users(id) ON DELETE SET NULL,
            approved_at TIMESTAMPTZ,

            access_token VARCHAR(64) UNIQUE,
            access_token_expires_at TIMESTAMPTZ,

            sent_at TIMESTAMPTZ,
            completed_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),

            CONSTRAINT ck_care_plans_status CHECK (status IN (
                'draft', 'pending_review', 'interpreter_review',
                'interpreter_approved', 'approved', 'sent', 'completed'
            ))
        )
    ''')
    op.execute('CREATE INDEX idx_care_plans_tenant_status ON care_plans(tenant_id, status)')
    op.execute('CREATE INDEX idx_care_plans_tenant_clinician ON care_plans(tenant_id, clinician_id)')

    # ==========================================================================
    # Check-ins
    # ==========================================================================
    op.execute('''
        CREATE TABLE check_ins (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            care_plan_id UUID NOT NULL REFERENCES care_plans(id) ON DELETE CASCADE,
            patient_id UUID NOT NULL REFERENCES patients(id) ON DELETE CASCADE,
            tenant_id UUID NOT NULL REFERENCES tenants(id) ON DELETE CASCADE,
            attempt_number INTEGER NOT NULL,
            scheduled_for TIMESTAMPTZ NOT NULL,
            sent_at TIMESTAMPTZ,
            response VARCHAR(10),
            responded_at TIMESTAMPTZ,
            response_notes TEXT,
            alert_created BOOLEAN NOT NULL DEFAULT false,
            alert_resolved_at TIMESTAMPTZ,
            alert_resolved_by_id UUID REFERENCES users(id) ON DELETE SET NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT uq_check_ins_plan_attempt UNIQUE (care_plan_id, attempt_number),
            CONSTRAINT ck_check_ins_response CHECK (response IN ('green', 'yellow', 'red'))
        )
    ''')
    op.execute('CREATE INDEX idx_check_ins_tenant_alert ON check_ins(tenant_id, alert_created)')
    op.execute('CREATE INDEX idx_check_ins_due ON check_ins(scheduled_for, sent_at)')

    # ==========================================================================
    # Audit trail (append-only)
    # ==========================================================================
    op.execute('''
        CREATE TABLE audit_logs (
            id BIGSERIAL PRIMARY KEY,
            tenant_id UUID REFERENCES tenants(id) ON DELETE CASCADE,
            care_plan_id UUID,
            actor_user_id UUID REFERENCES users(id) ON DELETE SET NULL,
            action VARCHAR(50) NOT NULL,
            details JSONB,
            ip_address VARCHAR(45),
            user_agent VARCHAR(500),
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')
    op.execute('CREATE INDEX idx_audit_tenant_created ON audit_logs(tenant_id, created_at)')
    op.execute('CREATE INDEX idx_audit_plan_created ON audit_logs(care_plan_id, created_at)')


def downgrade() -> None:
    """Drop all tables."""
    op.execute('DROP TABLE IF EXISTS audit_logs CASCADE')
    op.execute('DROP TABLE IF EXISTS check_ins CASCADE')
    op.execute('DROP TABLE IF EXISTS care_plans CASCADE')
    op.execute('DROP TABLE IF EXISTS patients CASCADE')
    op.execute('DROP TABLE IF EXISTS users CASCADE')
    op.execute('DROP TABLE IF EXISTS tenants CASCADE')
