from __future__ import annotations

from ..extensions import db
from storefront.time_utils import to_utc_z


class Category(db.Model):
    __tablename__ = "categories"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    slug = db.Column(db.String(120), nullable=False, unique=True, index=True)
    description = db.Column(db.Text, nullable=True)
    image_url = db.Column(db.String(512), nullable=True)
    parent_id = db.Column(db.Integer, db.ForeignKey("categories.id"), nullable=True)
    sort_order = db.Column(db.Integer, nullable=False, default=0)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    parent = db.relationship("Category", remote_side=[id], backref=db.backref("children", lazy=True))


class Product(db.Model):
    """
    Catalog product. Holds the base price; sellable stock lives on variants.

    Authoritative storage in cents (frontend may only format for display).
    """
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    category_id = db.Column(db.Integer, db.ForeignKey("categories.id"), nullable=True, index=True)

    name = db.Column(db.String(255), nullable=False)
    slug = db.Column(db.String(255), nullable=False, unique=True, index=True)
    description = db.Column(db.Text, nullable=True)

    price_cents = db.Column(db.Integer, nullable=False)
    compare_at_price_cents = db.Column(db.Integer, nullable=True)

    # active, draft, archived
    status = db.Column(db.String(16), nullable=False, default="active", index=True)
    is_featured = db.Column(db.Boolean, nullable=False, default=False)
    is_new = db.Column(db.Boolean, nullable=False, default=False)

    meta_title = db.Column(db.String(255), nullable=True)
    meta_description = db.Column(db.String(512), nullable=True)

    published_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    category = db.relationship("Category", backref=db.backref("products", lazy=True))

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    def primary_image_url(self) -> str | None:
        images = sorted(self.images, key=lambda img: (img.sort_order, img.id))
        return images[0].url if images else None

    def __repr__(self) -> str:
        return f"<Product id={self.id} slug={self.slug!r} status={self.status!r}>"


class ProductVariant(db.Model):
    """
    Size/color variant. stock_quantity is the unit of inventory truth and
    never goes negative.
    """
    __tablename__ = "product_variants"
    __table_args__ = (
        db.CheckConstraint("stock_quantity >= 0", name="ck_variants_stock_non_negative"),
        db.Index("ix_variants_product_active", "product_id", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    sku = db.Column(db.String(64), nullable=False, unique=True)
    size = db.Column(db.String(16), nullable=True)
    color = db.Column(db.String(64), nullable=True)

    price_adjustment_cents = db.Column(db.Integer, nullable=False, default=0)
    stock_quantity = db.Column(db.Integer, nullable=False, default=0)
    low_stock_threshold = db.Column(db.Integer, nullable=False, default=5)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product", backref=db.backref("variants", lazy=True))

    @property
    def unit_price_cents(self) -> int:
        return self.product.price_cents + (self.price_adjustment_cents or 0)

    @property
    def is_sellable(self) -> bool:
        return self.is_active and self.product.is_active

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "productId": self.product_id,
            "sku": self.sku,
            "size": self.size,
            "color": self.color,
            "priceAdjustment": self.price_adjustment_cents / 100,
            "stockQuantity": self.stock_quantity,
            "lowStockThreshold": self.low_stock_threshold,
            "isActive": self.is_active,
        }


class ProductImage(db.Model):
    __tablename__ = "product_images"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    url = db.Column(db.String(512), nullable=False)
    alt_text = db.Column(db.String(255), nullable=True)
    sort_order = db.Column(db.Integer, nullable=False, default=0)

    product = db.relationship("Product", backref=db.backref("images", lazy=True))


class WishlistItem(db.Model):
    __tablename__ = "wishlists"
    __table_args__ = (
        db.UniqueConstraint("user_id", "product_id", name="uq_wishlists_user_product"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product")
