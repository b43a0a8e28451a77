from __future__ import annotations

from ..extensions import db
from storefront.time_utils import to_utc_z
from storefront.validation import cents_to_dollars


RAFFLE_STATUS_ACTIVE = "active"
RAFFLE_STATUS_DRAWN = "drawn"
RAFFLE_STATUS_COMPLETED = "completed"
RAFFLE_STATUS_CANCELLED = "cancelled"

ENTRY_STATUS_PENDING = "pending"
ENTRY_STATUS_WON = "won"
ENTRY_STATUS_LOST = "lost"


class Raffle(db.Model):
    """
    One limited-drop event.

    Entry is open while now is in [entry_start, entry_end) and status is
    active. Once drawn only status may change.
    """
    __tablename__ = "raffles"
    __table_args__ = (
        db.CheckConstraint("winners_count >= 1", name="ck_raffles_winners_positive"),
        db.Index("ix_raffles_status_window", "status", "entry_start", "entry_end"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=True, index=True)

    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    rules = db.Column(db.Text, nullable=True)
    retail_price_cents = db.Column(db.Integer, nullable=True)

    entry_start = db.Column(db.DateTime(timezone=True), nullable=False)
    entry_end = db.Column(db.DateTime(timezone=True), nullable=False)
    draw_date = db.Column(db.DateTime(timezone=True), nullable=True)

    max_entries = db.Column(db.Integer, nullable=True)
    winners_count = db.Column(db.Integer, nullable=False, default=1)

    status = db.Column(db.String(16), nullable=False, default=RAFFLE_STATUS_ACTIVE, index=True)
    drawn_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "productId": self.product_id,
            "title": self.title,
            "description": self.description,
            "rules": self.rules,
            "retailPrice": cents_to_dollars(self.retail_price_cents),
            "entryStart": to_utc_z(self.entry_start),
            "entryEnd": to_utc_z(self.entry_end),
            "drawDate": to_utc_z(self.draw_date),
            "maxEntries": self.max_entries,
            "winnersCount": self.winners_count,
            "status": self.status,
            "drawnAt": to_utc_z(self.drawn_at),
        }


class RaffleEntry(db.Model):
    """
    A user's single entry into a raffle.

    WHY: loyalty_tier and priority_multiplier are snapshots taken at entry
    time. Later tier changes do not alter the odds.
    """
    __tablename__ = "raffle_entries"
    __table_args__ = (
        db.UniqueConstraint("raffle_id", "user_id", name="uq_raffle_entries_raffle_user"),
        db.CheckConstraint("priority_multiplier >= 1", name="ck_raffle_entries_multiplier_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    raffle_id = db.Column(db.Integer, db.ForeignKey("raffles.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    size_preference = db.Column(db.String(16), nullable=True)
    shipping_address_id = db.Column(db.Integer, db.ForeignKey("addresses.id"), nullable=True)

    loyalty_tier = db.Column(db.String(16), nullable=False)
    priority_multiplier = db.Column(db.Integer, nullable=False, default=1)

    status = db.Column(db.String(16), nullable=False, default=ENTRY_STATUS_PENDING, index=True)
    won_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    raffle = db.relationship("Raffle", backref=db.backref("entries", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "raffleId": self.raffle_id,
            "sizePreference": self.size_preference,
            "tier": self.loyalty_tier,
            "priorityMultiplier": self.priority_multiplier,
            "status": self.status,
            "enteredAt": to_utc_z(self.created_at),
            "wonAt": to_utc_z(self.won_at),
        }
