from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class User(db.Model):
    """
    Platform member as seen by the payout subsystem.

    Only the fields the disbursement flow reads are mapped here; profile,
    points and subscription data live with the wider application.
    """
    __tablename__ = "users"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), nullable=False, unique=True)
    username = db.Column(db.String(120), nullable=True)

    # Live PayPal receiver address; may be edited after winners are selected
    paypal_email = db.Column(db.String(255), nullable=True)

    is_admin = db.Column(db.Boolean, nullable=False, default=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "email": self.email,
            "username": self.username,
            "paypal_email": self.paypal_email,
            "is_admin": self.is_admin,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class CycleSetting(db.Model):
    """
    A reward cycle (e.g. one month of point accumulation).

    The payout subsystem only writes payout_phase_status/payout_completed_at,
    once every item of every non-cancelled batch for the cycle is terminal.
    """
    __tablename__ = "cycle_settings"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    # PENDING until every recipient has a terminal outcome
    payout_phase_status = db.Column(db.String(16), nullable=False, default="pending")
    payout_completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "is_active": self.is_active,
            "payout_phase_status": self.payout_phase_status,
            "payout_completed_at": to_utc_z(self.payout_completed_at),
            "created_at": to_utc_z(self.created_at),
        }


class CycleWinnerSelection(db.Model):
    """
    A winner selected for a cycle.

    Owned by the cycle-selection collaborator. The reconciliation engine
    writes payout_status/payout_final; the notification gate reads and
    writes notification_displayed.

    payout_status: pending, processing, success, failed, unclaimed
    """
    __tablename__ = "cycle_winner_selections"
    __table_args__ = (
        db.UniqueConstraint("cycle_setting_id", "user_id", name="uq_winner_cycle_user"),
        db.Index("ix_winner_cycle_status", "cycle_setting_id", "payout_status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    cycle_setting_id = db.Column(db.Integer, db.ForeignKey("cycle_settings.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    tier = db.Column(db.String(16), nullable=True)

    # All amounts in cents
    payout_calculated = db.Column(db.Integer, nullable=False, default=0)
    payout_override = db.Column(db.Integer, nullable=True)
    payout_final = db.Column(db.Integer, nullable=True)
    payout_status = db.Column(db.String(16), nullable=False, default="pending", index=True)

    # Receiver address captured at selection time
    paypal_email_snapshot = db.Column(db.String(255), nullable=True)

    notification_displayed = db.Column(db.Boolean, nullable=False, default=False)

    selected_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    cycle = db.relationship("CycleSetting", backref=db.backref("winners", lazy=True))
    user = db.relationship("User", backref=db.backref("winner_selections", lazy=True))

    @property
    def payout_amount_cents(self) -> int:
        if self.payout_override is not None:
            return int(self.payout_override)
        return int(self.payout_calculated or 0)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "cycle_setting_id": self.cycle_setting_id,
            "user_id": self.user_id,
            "tier": self.tier,
            "payout_calculated": self.payout_calculated,
            "payout_override": self.payout_override,
            "payout_final": self.payout_final,
            "payout_status": self.payout_status,
            "paypal_email_snapshot": self.paypal_email_snapshot,
            "notification_displayed": self.notification_displayed,
            "selected_at": to_utc_z(self.selected_at),
            "updated_at": to_utc_z(self.updated_at),
        }
