"""
Tests for TransactionRunner: atomic attempts, bounded retry of transient
store failures, and StoreUnavailableError on exhaustion.
"""

from uuid import uuid4

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import InterfaceError, OperationalError

from rental_kernel.db.engine import get_session_factory
from rental_kernel.db.transaction import TransactionRunner, is_transient
from rental_kernel.exceptions import (
    LockTimeoutError,
    StoreUnavailableError,
    TenantNotFoundError,
)
from rental_modules.directory.models import User, UserRole
from rental_modules.directory.orm import UserModel


class SimulatedCrash(Exception):
    """Exception to simulate a crash at a specific point."""


def _locked() -> OperationalError:
    return OperationalError("INSERT INTO users", {}, Exception("database is locked"))


def _add_user(session, name: str) -> None:
    session.add(UserModel.from_dto(
        User(
            id=uuid4(),
            username=name,
            email=f"{name}@example.com",
            full_name=name,
            role=UserRole.TENANT,
        ),
        created_by_id=uuid4(),
    ))
    session.flush()


def _user_count() -> int:
    session = get_session_factory()()
    try:
        return session.scalar(select(func.count()).select_from(UserModel))
    finally:
        session.close()


class TestIsTransient:
    def test_classification(self):
        assert is_transient(_locked())
        assert is_transient(InterfaceError("SELECT 1", {}, Exception("gone")))
        assert is_transient(LockTimeoutError("tenant:x", 1.0))
        assert not is_transient(TenantNotFoundError("x"))
        assert not is_transient(ValueError("boom"))


class TestTransactionRunner:
    @pytest.fixture
    def sleeps(self):
        return []

    @pytest.fixture
    def runner(self, db_engine, sleeps):
        return TransactionRunner(
            get_session_factory(),
            max_attempts=3,
            base_delay_seconds=0.1,
            max_delay_seconds=0.15,
            sleep=sleeps.append,
        )

    def test_commits_result(self, runner):
        result = runner.run("create_user", lambda s: _add_user(s, "amina") or "done")

        assert result == "done"
        assert _user_count() == 1

    def test_crash_rolls_back_everything(self, runner):
        def work(session):
            _add_user(session, "amina")
            _add_user(session, "baraka")
            raise SimulatedCrash()

        with pytest.raises(SimulatedCrash):
            runner.run("create_users", work)

        assert _user_count() == 0

    def test_domain_error_not_retried(self, runner, sleeps):
        calls = []

        def work(session):
            calls.append(1)
            raise TenantNotFoundError("missing")

        with pytest.raises(TenantNotFoundError):
            runner.run("record_payment", work)

        assert len(calls) == 1
        assert sleeps == []

    def test_transient_failure_retried_in_fresh_transaction(self, runner, sleeps, captured_logs):
        attempts = []

        def work(session):
            attempts.append(session)
            _add_user(session, f"user{len(attempts)}")
            if len(attempts) < 3:
                raise _locked()
            return len(attempts)

        assert runner.run("create_user", work) == 3

        assert len({id(s) for s in attempts}) == 3
        assert _user_count() == 1
        assert sleeps == [0.1, 0.15]
        retries = [r for r in captured_logs() if r["message"] == "transaction_retry"]
        assert [r["attempt"] for r in retries] == [1, 2]
        assert retries[0]["operation"] == "create_user"

    def test_exhaustion_raises_store_unavailable(self, runner, sleeps, captured_logs):
        def work(session):
            raise _locked()

        with pytest.raises(StoreUnavailableError) as exc_info:
            runner.run("record_payment", work)

        assert exc_info.value.operation == "record_payment"
        assert exc_info.value.attempts == 3
        assert isinstance(exc_info.value.__cause__, OperationalError)
        assert len(sleeps) == 2
        assert any(r["message"] == "transaction_retries_exhausted" for r in captured_logs())

    def test_lock_timeout_is_retried(self, runner, sleeps):
        attempts = []

        def work(session):
            attempts.append(1)
            if len(attempts) == 1:
                raise LockTimeoutError("tenant:1", 0.01)
            return "ok"

        assert runner.run("apply_tenant_credit", work) == "ok"
        assert len(attempts) == 2
        assert sleeps == [0.1]

    def test_single_attempt_rejected(self, db_engine):
        with pytest.raises(ValueError):
            TransactionRunner(get_session_factory(), max_attempts=0)
