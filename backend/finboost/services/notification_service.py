# Overview: Winner notification gate (should a payout outcome be shown, and dismissal).

from __future__ import annotations

from ..extensions import db
from ..models import CycleWinnerSelection
from ..time_utils import utcnow


# Outcomes a winner is told about; unclaimed/processing are still settling
NOTIFIABLE_PAYOUT_STATUSES = ["success", "failed"]


def _winner(user_id: int, cycle_id: int) -> CycleWinnerSelection | None:
    return db.session.query(CycleWinnerSelection).filter_by(
        user_id=user_id,
        cycle_setting_id=cycle_id,
    ).first()


def should_notify(user_id: int, cycle_id: int) -> bool:
    winner = _winner(user_id, cycle_id)
    if not winner:
        return False
    return winner.payout_status in NOTIFIABLE_PAYOUT_STATUSES and not winner.notification_displayed


def dismiss(user_id: int, cycle_id: int) -> bool:
    """
    Mark the winner notification as displayed.

    Idempotent: dismissing twice (or for a non-winner) is a no-op.
    Returns True if the flag was changed.
    """
    winner = _winner(user_id, cycle_id)
    if not winner or winner.notification_displayed:
        return False
    winner.notification_displayed = True
    winner.updated_at = utcnow()
    db.session.commit()
    return True


def get_winner_status(user_id: int, cycle_id: int) -> dict:
    winner = _winner(user_id, cycle_id)
    if not winner:
        return {
            "isWinner": False,
            "payoutStatus": None,
            "notificationDisplayed": False,
            "shouldNotify": False,
            "amountCents": None,
            "tier": None,
        }
    return {
        "isWinner": True,
        "payoutStatus": winner.payout_status,
        "notificationDisplayed": bool(winner.notification_displayed),
        "shouldNotify": winner.payout_status in NOTIFIABLE_PAYOUT_STATUSES and not winner.notification_displayed,
        "amountCents": winner.payout_final if winner.payout_final is not None else winner.payout_amount_cents,
        "tier": winner.tier,
    }
