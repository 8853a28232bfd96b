"""Product variants and low-stock thresholds

Revision ID: 20261018_variants
Revises: 20261017_initial
Create Date: 2026-10-18
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261018_variants"
down_revision = "20261017_initial"
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "product_variants",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("sku", sa.String(64), nullable=True),
        sa.Column("size", sa.String(64), nullable=True),
        sa.Column("color", sa.String(64), nullable=True),
        sa.Column("price_cents", sa.Integer(), nullable=True),
        sa.Column("stock", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.CheckConstraint("stock >= 0", name="ck_product_variants_stock_non_negative"),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_product_variants_product_id", "product_variants", ["product_id"])

    with op.batch_alter_table("products", schema=None) as batch_op:
        batch_op.add_column(sa.Column("min_stock", sa.Integer(), nullable=True))

    with op.batch_alter_table("stock_movements", schema=None) as batch_op:
        batch_op.add_column(sa.Column("variant_id", sa.Integer(), nullable=True))
        batch_op.create_foreign_key(
            "fk_stock_movements_variant_id", "product_variants", ["variant_id"], ["id"],
        )
        batch_op.create_index("ix_stock_movements_variant_id", ["variant_id"], unique=False)

    with op.batch_alter_table("sale_items", schema=None) as batch_op:
        batch_op.add_column(sa.Column("variant_id", sa.Integer(), nullable=True))
        batch_op.create_foreign_key(
            "fk_sale_items_variant_id", "product_variants", ["variant_id"], ["id"],
        )
        batch_op.create_index("ix_sale_items_variant_id", ["variant_id"], unique=False)


def downgrade():
    with op.batch_alter_table("sale_items", schema=None) as batch_op:
        batch_op.drop_index("ix_sale_items_variant_id")
        batch_op.drop_constraint("fk_sale_items_variant_id", type_="foreignkey")
        batch_op.drop_column("variant_id")

    with op.batch_alter_table("stock_movements", schema=None) as batch_op:
        batch_op.drop_index("ix_stock_movements_variant_id")
        batch_op.drop_constraint("fk_stock_movements_variant_id", type_="foreignkey")
        batch_op.drop_column("variant_id")

    with op.batch_alter_table("products", schema=None) as batch_op:
        batch_op.drop_column("min_stock")

    op.drop_index("ix_product_variants_product_id", table_name="product_variants")
    op.drop_table("product_variants")
