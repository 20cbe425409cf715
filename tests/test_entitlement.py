from datetime import timedelta

import pytest

from db.models.memberships import MembershipGrant
from exams.entitlement import Feature, consume_quota, membership_status, resolve_access
from exams.errors import FeatureNotEntitled, MembershipRequired, QuotaExhausted
from exams.schedule import utcnow


class TestResolveAccess:
    def test_free_content_allowed_without_membership(self, db_session, learner):
        decision = resolve_access(db_session, learner.id, Feature.TRYOUT, is_free=True)
        assert decision.allowed is True
        assert decision.membership is None

    def test_free_content_ignores_feature_flags(self, db_session, learner, make_membership):
        make_membership(learner, allow_tryout=False)
        decision = resolve_access(db_session, learner.id, Feature.TRYOUT, is_free=True)
        assert decision.allowed is True

    def test_paid_content_requires_membership(self, db_session, learner):
        with pytest.raises(MembershipRequired):
            resolve_access(db_session, learner.id, Feature.TRYOUT)

    def test_inactive_membership_is_ignored(self, db_session, learner, make_membership):
        make_membership(learner, is_active=False)
        with pytest.raises(MembershipRequired):
            resolve_access(db_session, learner.id, Feature.PRACTICE)

    def test_expired_membership_is_ignored(self, db_session, learner, make_membership):
        make_membership(learner, expires_at=utcnow() - timedelta(days=1))
        with pytest.raises(MembershipRequired):
            resolve_access(db_session, learner.id, Feature.PRACTICE)

    def test_feature_flag_off(self, db_session, learner, make_membership):
        make_membership(learner, allow_cermat=False)
        with pytest.raises(FeatureNotEntitled):
            resolve_access(db_session, learner.id, Feature.CERMAT)

    def test_entitled_member(self, db_session, learner, make_membership):
        membership = make_membership(learner)
        decision = resolve_access(db_session, learner.id, Feature.TRYOUT)
        assert decision.allowed is True
        assert decision.membership.id == membership.id


class TestConsumeQuota:
    def test_increments_used_count(self, db_session, learner, make_membership):
        membership = make_membership(learner, tryout_quota=3, tryout_used=1)
        consume_quota(db_session, learner.id, Feature.TRYOUT)
        db_session.commit()

        db_session.refresh(membership)
        assert membership.tryout_used == 2

    def test_exhausted_quota_is_unchanged(self, db_session, learner, make_membership):
        membership = make_membership(learner, tryout_quota=1, tryout_used=1)
        with pytest.raises(QuotaExhausted):
            consume_quota(db_session, learner.id, Feature.TRYOUT)
        db_session.rollback()

        db_session.refresh(membership)
        assert membership.tryout_used == 1

    @pytest.mark.parametrize("quota", [0, None])
    def test_zero_or_unset_quota_is_unlimited(self, db_session, learner, make_membership, quota):
        membership = make_membership(learner, practice_quota=quota, practice_used=40)
        consume_quota(db_session, learner.id, Feature.PRACTICE)
        db_session.commit()

        db_session.refresh(membership)
        assert membership.practice_used == 41

    def test_cermat_has_no_quota(self, db_session, learner, make_membership):
        membership = make_membership(learner)
        consume_quota(db_session, learner.id, Feature.CERMAT)
        db_session.refresh(membership)
        assert membership.tryout_used == 0
        assert membership.practice_used == 0


class TestMembershipStatus:
    def test_inactive(self, db_session, learner):
        assert membership_status(db_session, learner.id) == {"isActive": False}

    def test_remaining_counts(self, db_session, learner, make_membership):
        make_membership(learner, tryout_quota=5, tryout_used=2)
        status = membership_status(db_session, learner.id)

        assert status["isActive"] is True
        assert status["tryoutRemaining"] == 3
        assert status["practiceRemaining"] is None

    def test_latest_grant_wins(self, db_session, learner, make_membership):
        make_membership(learner, package_name="Basic")
        make_membership(learner, package_name="Premium Plus")
        assert membership_status(db_session, learner.id)["packageName"] == "Premium Plus"
        assert db_session.query(MembershipGrant).count() == 2
