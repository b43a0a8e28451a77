from __future__ import annotations

from sqlalchemy import text

from ..extensions import db
from storefront.time_utils import to_utc_z


class LoyaltyAccount(db.Model):
    """
    Points account for a storefront user.

    WHY: points_balance is spendable; lifetime_points only ever grows.
    tier is a cached projection of the points and is recomputed on earn,
    never on redeem.
    """
    __tablename__ = "loyalty_accounts"
    __table_args__ = (
        db.UniqueConstraint("user_id", name="uq_loyalty_accounts_user"),
        db.CheckConstraint("points_balance >= 0", name="ck_loyalty_balance_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    points_balance = db.Column(db.Integer, nullable=False, default=0)
    lifetime_points = db.Column(db.Integer, nullable=False, default=0)
    tier = db.Column(db.String(16), nullable=False, default="STARTER")

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    user = db.relationship("User", backref=db.backref("loyalty_account", uselist=False, lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "userId": self.user_id,
            "pointsBalance": self.points_balance,
            "lifetimePoints": self.lifetime_points,
            "tier": self.tier,
            "createdAt": to_utc_z(self.created_at),
        }


class LoyaltyTransaction(db.Model):
    """
    Append-only points ledger.

    points is signed: positive for earn, negative for redeem.
    """
    __tablename__ = "loyalty_transactions"
    __table_args__ = (
        db.Index("ix_loyalty_tx_user_created", "user_id", "created_at"),
        db.Index("ix_loyalty_tx_source_reference", "source", "reference_id"),
        # One purchase award per order, whoever commits first
        db.Index(
            "uq_loyalty_tx_purchase_order",
            "reference_id",
            unique=True,
            sqlite_where=text("source = 'purchase'"),
            postgresql_where=text("source = 'purchase'"),
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    account_id = db.Column(db.Integer, db.ForeignKey("loyalty_accounts.id"), nullable=False, index=True)

    # earn, redeem
    type = db.Column(db.String(16), nullable=False)
    points = db.Column(db.Integer, nullable=False)
    balance_after = db.Column(db.Integer, nullable=False)

    # purchase, review, referral, bonus, manual, redemption
    source = db.Column(db.String(32), nullable=False)
    reference_id = db.Column(db.String(64), nullable=True)
    description = db.Column(db.String(255), nullable=True)
    reward_code = db.Column(db.String(64), nullable=True, unique=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    account = db.relationship("LoyaltyAccount", backref=db.backref("transactions", lazy="dynamic"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type,
            "points": self.points,
            "balanceAfter": self.balance_after,
            "source": self.source,
            "referenceId": self.reference_id,
            "description": self.description,
            "rewardCode": self.reward_code,
            "createdAt": to_utc_z(self.created_at),
        }
