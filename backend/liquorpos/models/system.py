from __future__ import annotations

from ..extensions import db
from ..time_utils import utcnow


class SchemaMigration(db.Model):
    """One row per applied schema migration."""
    __tablename__ = "schema_migrations"

    version = db.Column(db.String(32), primary_key=True)
    description = db.Column(db.String(255), nullable=False)
    applied_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
