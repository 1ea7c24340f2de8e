"""Initial schema: auth, catalog, inventory, cash registers, invoicing, restaurant floor, CxC, preferences.

Revision ID: f0a1b2c3d4e5
Revises:
Create Date: 2026-10-17
"""
from typing import Sequence, Union

from alembic import op

from app.facturador.models import Base


# revision identifiers, used by Alembic.
revision: str = "f0a1b2c3d4e5"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Tables are created from the declarative metadata as of this revision.
    # Later revisions must use explicit op.* calls.
    Base.metadata.create_all(bind=op.get_bind(), checkfirst=True)


def downgrade() -> None:
    Base.metadata.drop_all(bind=op.get_bind())
