from __future__ import annotations

from ..extensions import db
from codetrack.time_utils import to_utc_z


ORG_TYPE_MANUFACTURER = "MANUFACTURER"
ORG_TYPE_WAREHOUSE = "WAREHOUSE"
ORG_TYPE_DISTRIBUTOR = "DISTRIBUTOR"
ORG_TYPE_HQ = "HQ"

ORG_TYPES = (ORG_TYPE_MANUFACTURER, ORG_TYPE_WAREHOUSE, ORG_TYPE_DISTRIBUTOR, ORG_TYPE_HQ)


class Organization(db.Model):
    """
    A party in the supply chain.

    WHY: Every handoff (manufacturer -> warehouse -> distributor) is between
    two organizations, and the organization type is the "role" an actor
    claims when asking for a transition. Organization CRUD is owned by an
    external system; this table mirrors what the tracking engine needs.
    """
    __tablename__ = "organizations"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    code = db.Column(db.String(32), nullable=True, unique=True, index=True)  # Short code for lookups
    org_type = db.Column(db.String(16), nullable=False, index=True)  # MANUFACTURER, WAREHOUSE, DISTRIBUTOR, HQ

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Organization id={self.id} type={self.org_type} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "org_type": self.org_type,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }
