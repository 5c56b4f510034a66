# -*- coding: utf-8 -*-
"""
Quota consumption: the conditional UPDATE path, including concurrent callers.
"""

from concurrent.futures import ThreadPoolExecutor, as_completed

import pytest

from app.core.database import SessionLocal
from app.core.exceptions import NotFoundError, QuotaExceededError
from app.core.plans import PlanType, ResourceKind
from app.models.user import User
from app.services.quota_engine import QuotaEngine


class TestConsume:
    def test_consume_within_quota(self, db, make_user):
        user = make_user(PlanType.CORE)
        updated = QuotaEngine(db).consume(user.id, ResourceKind.MESSAGE, 30)

        assert updated.message_left == 70
        assert updated.messages_used == 30

    def test_consume_exact_remaining(self, db, make_user):
        user = make_user(PlanType.CORE)
        updated = QuotaEngine(db).consume(user.id, ResourceKind.DOCUMENT, 10)
        assert updated.document_left == 0
        assert updated.documents_used == 10

    def test_over_quota_leaves_state_unchanged(self, db, make_user):
        user = make_user(PlanType.BASIC)

        with pytest.raises(QuotaExceededError):
            QuotaEngine(db).consume(user.id, ResourceKind.MESSAGE, 21)

        fresh = db.query(User).filter(User.id == user.id).populate_existing().one()
        assert fresh.message_left == 20
        assert fresh.messages_used == 0

    def test_basic_has_no_documents(self, db, make_user):
        user = make_user(PlanType.BASIC)
        with pytest.raises(QuotaExceededError) as exc:
            QuotaEngine(db).consume(user.id, ResourceKind.DOCUMENT, 1)
        assert exc.value.status_code == 403

    def test_unlimited_counts_usage_but_stays_unlimited(self, db, make_user):
        user = make_user(PlanType.PRO)
        engine = QuotaEngine(db)
        engine.consume(user.id, ResourceKind.MESSAGE, 1000)
        updated = engine.consume(user.id, ResourceKind.MESSAGE, 5)

        assert updated.message_left is None
        assert updated.messages_used == 1005

    def test_unknown_user(self, db):
        with pytest.raises(NotFoundError):
            QuotaEngine(db).consume("does-not-exist", ResourceKind.MESSAGE, 1)


class TestConcurrentConsume:
    def _consume_once(self, user_id):
        session = SessionLocal()
        try:
            QuotaEngine(session).consume(user_id, ResourceKind.MESSAGE, 1)
            return True
        except QuotaExceededError:
            return False
        finally:
            session.close()

    @pytest.mark.parametrize("workers", [8, 25])
    def test_parallel_consumers_never_overspend(self, db, make_user, workers):
        user = make_user(PlanType.BASIC)  # 20 messages
        limit = user.message_left

        with ThreadPoolExecutor(max_workers=8) as executor:
            futures = [executor.submit(self._consume_once, user.id) for _ in range(workers)]
            outcomes = [f.result() for f in as_completed(futures)]

        fresh = db.query(User).filter(User.id == user.id).populate_existing().one()
        assert outcomes.count(True) == min(workers, limit)
        assert fresh.message_left == max(0, limit - workers)
        assert fresh.messages_used == min(workers, limit)
