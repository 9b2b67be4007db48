from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class PayoutBatch(db.Model):
    """
    One PayPal Payouts submission attempt for a cycle.

    LIFECYCLE:
    1. draft: Accepted from an admin request, items written, not yet sent
    2. submitted: Handed to PayPal (paypal_batch_id set once accepted)
    3. processing: PayPal reported at least one item still pending
    4. completed / partially_completed / failed: Every item terminal
    5. cancelled: Explicit admin action only; permits attempt + 1

    sender_batch_id is derived from (cycle_id, request_checksum, attempt)
    and is the PayPal-side deduplication key.
    """
    __tablename__ = "payout_batches"
    __table_args__ = (
        db.UniqueConstraint("sender_batch_id", name="uq_payout_batches_sender_batch_id"),
        db.Index("ix_payout_batches_cycle_checksum", "cycle_id", "request_checksum"),
        db.Index("ix_payout_batches_cycle_status", "cycle_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    cycle_id = db.Column(db.Integer, db.ForeignKey("cycle_settings.id"), nullable=False, index=True)

    sender_batch_id = db.Column(db.String(128), nullable=False)
    request_checksum = db.Column(db.String(64), nullable=False)
    attempt = db.Column(db.Integer, nullable=False, default=1)

    status = db.Column(db.String(24), nullable=False, default="draft", index=True)
    paypal_batch_id = db.Column(db.String(64), nullable=True, index=True)

    # Amounts in cents
    total_amount = db.Column(db.Integer, nullable=False, default=0)
    total_recipients = db.Column(db.Integer, nullable=False, default=0)

    successful_count = db.Column(db.Integer, nullable=False, default=0)
    failed_count = db.Column(db.Integer, nullable=False, default=0)
    pending_count = db.Column(db.Integer, nullable=False, default=0)
    unclaimed_count = db.Column(db.Integer, nullable=False, default=0)

    # Last submission / reconciliation error, kept for audit
    error_details = db.Column(db.Text, nullable=True)

    admin_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    cancelled_by_admin_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    cancel_reason = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    submitted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    cycle = db.relationship("CycleSetting", backref=db.backref("payout_batches", lazy=True))
    items = db.relationship(
        "PayoutBatchItem",
        back_populates="batch",
        cascade="all, delete-orphan",
        order_by="PayoutBatchItem.id",
        lazy=True,
    )
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "cycle_id": self.cycle_id,
            "sender_batch_id": self.sender_batch_id,
            "request_checksum": self.request_checksum,
            "attempt": self.attempt,
            "status": self.status,
            "paypal_batch_id": self.paypal_batch_id,
            "total_amount": self.total_amount,
            "total_recipients": self.total_recipients,
            "successful_count": self.successful_count,
            "failed_count": self.failed_count,
            "pending_count": self.pending_count,
            "unclaimed_count": self.unclaimed_count,
            "error_details": self.error_details,
            "admin_id": self.admin_id,
            "cancelled_by_admin_id": self.cancelled_by_admin_id,
            "cancel_reason": self.cancel_reason,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "submitted_at": to_utc_z(self.submitted_at),
            "cancelled_at": to_utc_z(self.cancelled_at),
            "version_id": self.version_id,
        }


class PayoutBatchItem(db.Model):
    """
    One recipient inside a payout batch.

    paypal_email is snapshotted when the batch is created and must not follow
    later profile edits. status: pending, success, failed, unclaimed
    """
    __tablename__ = "payout_batch_items"
    __table_args__ = (
        db.UniqueConstraint("batch_id", "cycle_winner_selection_id", name="uq_payout_items_batch_winner"),
        db.Index("ix_payout_items_winner_status", "cycle_winner_selection_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    batch_id = db.Column(db.Integer, db.ForeignKey("payout_batches.id", ondelete="CASCADE"), nullable=False, index=True)

    # Weak reference: the winner row is owned by the cycle collaborator
    cycle_winner_selection_id = db.Column(db.Integer, nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    paypal_email = db.Column(db.String(255), nullable=False)
    amount = db.Column(db.Integer, nullable=False)  # cents
    currency = db.Column(db.String(3), nullable=False, default="USD")
    note = db.Column(db.String(255), nullable=True)

    status = db.Column(db.String(16), nullable=False, default="pending", index=True)
    paypal_item_id = db.Column(db.String(64), nullable=True, index=True)
    transaction_status = db.Column(db.String(32), nullable=True)  # raw PayPal value
    error_code = db.Column(db.String(64), nullable=True)
    error_message = db.Column(db.Text, nullable=True)
    processed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    batch = db.relationship("PayoutBatch", back_populates="items")
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "batch_id": self.batch_id,
            "cycle_winner_selection_id": self.cycle_winner_selection_id,
            "user_id": self.user_id,
            "paypal_email": self.paypal_email,
            "amount": self.amount,
            "currency": self.currency,
            "note": self.note,
            "status": self.status,
            "paypal_item_id": self.paypal_item_id,
            "transaction_status": self.transaction_status,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "processed_at": to_utc_z(self.processed_at),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }


class UserRewardRecord(db.Model):
    """
    User-visible record of a settled reward.

    Immutable once written; exactly one per successful PayoutBatchItem,
    enforced by the unique constraint on batch_item_id.
    """
    __tablename__ = "user_reward_records"
    __table_args__ = (
        db.UniqueConstraint("batch_item_id", name="uq_user_reward_records_batch_item"),
        db.Index("ix_user_reward_records_user_cycle", "user_id", "cycle_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    batch_item_id = db.Column(db.Integer, db.ForeignKey("payout_batch_items.id"), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    cycle_id = db.Column(db.Integer, db.ForeignKey("cycle_settings.id"), nullable=False, index=True)
    cycle_winner_selection_id = db.Column(db.Integer, nullable=False)

    amount = db.Column(db.Integer, nullable=False)  # cents
    currency = db.Column(db.String(3), nullable=False, default="USD")
    paypal_item_id = db.Column(db.String(64), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    batch_item = db.relationship("PayoutBatchItem")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "batch_item_id": self.batch_item_id,
            "user_id": self.user_id,
            "cycle_id": self.cycle_id,
            "cycle_winner_selection_id": self.cycle_winner_selection_id,
            "amount": self.amount,
            "currency": self.currency,
            "paypal_item_id": self.paypal_item_id,
            "created_at": to_utc_z(self.created_at),
        }
