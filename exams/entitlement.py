import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from db.models.memberships import MembershipGrant
from .errors import FeatureNotEntitled, MembershipRequired, QuotaExhausted
from .schedule import utcnow

logger = logging.getLogger(__name__)


class Feature(str, Enum):
    TRYOUT = "TRYOUT"
    PRACTICE = "PRACTICE"
    CERMAT = "CERMAT"


ALLOW_FLAGS = {
    Feature.TRYOUT: "allow_tryout",
    Feature.PRACTICE: "allow_practice",
    Feature.CERMAT: "allow_cermat",
}

# (quota column, used column); cermat has no quota
QUOTA_COLUMNS = {
    Feature.TRYOUT: ("tryout_quota", "tryout_used"),
    Feature.PRACTICE: ("practice_quota", "practice_used"),
}


@dataclass
class AccessDecision:
    allowed: bool
    membership: Optional[MembershipGrant]


def get_active_membership(db: Session, user_id: int, now: Optional[datetime] = None) -> Optional[MembershipGrant]:
    now = now or utcnow()
    return (
        db.query(MembershipGrant)
        .filter(
            MembershipGrant.user_id == user_id,
            MembershipGrant.is_active.is_(True),
            or_(MembershipGrant.expires_at.is_(None), MembershipGrant.expires_at > now),
        )
        .order_by(MembershipGrant.id.desc())
        .first()
    )


def assert_feature(membership: MembershipGrant, feature: Feature) -> None:
    if not getattr(membership, ALLOW_FLAGS[feature]):
        raise FeatureNotEntitled(f"Your membership does not include {feature.value.lower()}.")


def resolve_access(db: Session, user_id: int, feature: Feature, is_free: bool = False) -> AccessDecision:
    membership = get_active_membership(db, user_id)

    if is_free:
        # free content never consumes quota and ignores the membership flags
        return AccessDecision(allowed=True, membership=membership)

    if not membership:
        raise MembershipRequired("Membership is not active or has not been validated by an admin.")

    assert_feature(membership, feature)
    return AccessDecision(allowed=True, membership=membership)


def consume_quota(db: Session, user_id: int, feature: Feature) -> None:
    """
    Increment the used-counter for ``feature`` inside the caller's transaction.

    A single conditional UPDATE so two concurrent starts can never both
    take the last slot. Does not commit.
    """
    if feature not in QUOTA_COLUMNS:
        return

    membership = get_active_membership(db, user_id)
    if not membership:
        raise MembershipRequired()

    quota_name, used_name = QUOTA_COLUMNS[feature]
    quota_col = getattr(MembershipGrant, quota_name)
    used_col = getattr(MembershipGrant, used_name)

    updated = (
        db.query(MembershipGrant)
        .filter(
            MembershipGrant.id == membership.id,
            or_(quota_col.is_(None), quota_col == 0, used_col < quota_col),
        )
        .update({used_col: used_col + 1}, synchronize_session=False)
    )
    if not updated:
        logger.info("Quota exhausted user_id=%s feature=%s", user_id, feature.value)
        raise QuotaExhausted(f"Your {feature.value.lower()} quota is used up.")

    db.expire(membership)


def _remaining(quota: Optional[int], used: int) -> Optional[int]:
    if not quota:
        return None
    return max(quota - used, 0)


def membership_status(db: Session, user_id: int) -> Dict[str, Any]:
    membership = get_active_membership(db, user_id)
    if not membership:
        return {"isActive": False}

    return {
        "isActive": True,
        "packageName": membership.package_name,
        "expiresAt": membership.expires_at.isoformat() if membership.expires_at else None,
        "allowTryout": membership.allow_tryout,
        "allowPractice": membership.allow_practice,
        "allowCermat": membership.allow_cermat,
        "tryoutQuota": membership.tryout_quota or 0,
        "tryoutUsed": membership.tryout_used,
        "tryoutRemaining": _remaining(membership.tryout_quota, membership.tryout_used),
        "practiceQuota": membership.practice_quota or 0,
        "practiceUsed": membership.practice_used,
        "practiceRemaining": _remaining(membership.practice_quota, membership.practice_used),
    }
