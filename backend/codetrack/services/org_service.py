# Overview: Organization lookups and acting-role checks.

from __future__ import annotations

from ..extensions import db
from ..errors import ActorRoleMismatch, OrganizationNotFound, ValidationError
from ..models import Organization
from ..models.tenancy import ORG_TYPES


def get_organization(org_id: int) -> Organization:
    org = db.session.get(Organization, org_id) if org_id else None
    if not org:
        raise OrganizationNotFound(f"Organization {org_id} not found", details={"org_id": org_id})
    return org


def require_org_type(org_id: int | None, *org_types: str, field: str = "org_id") -> Organization:
    """
    Load the acting organization and check it may play the required role.

    Raises:
        ValidationError: org_id missing
        OrganizationNotFound: unknown org
        ActorRoleMismatch: inactive org, or wrong org_type
    """
    if not org_id:
        raise ValidationError(f"{field} is required", details={"field": field})
    org = get_organization(org_id)
    if not org.is_active:
        raise ActorRoleMismatch(f"Organization {org.id} is inactive", details={"org_id": org.id})
    if org_types and org.org_type not in org_types:
        raise ActorRoleMismatch(
            f"Organization {org.id} is a {org.org_type}, expected {' or '.join(org_types)}",
            details={"org_id": org.id, "org_type": org.org_type, "required": list(org_types)},
        )
    return org


def create_organization(*, name: str, org_type: str, code: str | None = None) -> Organization:
    if org_type not in ORG_TYPES:
        raise ValidationError(f"org_type must be one of {', '.join(ORG_TYPES)}", details={"org_type": org_type})
    org = Organization(name=name, code=code, org_type=org_type, is_active=True)
    db.session.add(org)
    db.session.flush()
    return org
