"""Tests for config and stored-record invariant checks."""

import json

import pytest
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path

from check_invariants import check
from jobledger.invariants import check_config, check_store
from jobledger.models.job import Job, JobStatus
from jobledger.models.ledger import (
    BalanceDelta,
    FinanceField,
    Transaction,
    TransactionStatus,
    TransactionType,
)
from jobledger.persistence.store import STATE_FILENAME, DocumentStore
from jobledger.policy.resolver import PARAMS_FILENAME, PolicyResolver


CONFIG_DIR = Path(__file__).resolve().parents[1] / "config"


def _now() -> datetime:
    return datetime(2026, 3, 12, 18, 0, 0, tzinfo=timezone.utc)


def _paid_job(**kwargs) -> Job:
    defaults = dict(
        job_id="job_1",
        client_uid="client_1",
        tradie_uid="tradie_1",
        title="Fix leaky tap",
        status=JobStatus.IN_PROGRESS,
        payment_amount=Decimal("150.00"),
        commission=Decimal("22.50"),
        tradie_amount=Decimal("127.50"),
    )
    defaults.update(kwargs)
    return Job(**defaults)


def _payment(status: TransactionStatus = TransactionStatus.ON_HOLD) -> Transaction:
    return Transaction(
        transaction_id="tx_1",
        tradie_uid="tradie_1",
        type=TransactionType.PAYMENT,
        amount=Decimal("127.50"),
        status=status,
        created_utc=_now(),
        job_id="job_1",
        commission=Decimal("22.50"),
    )


def _hold() -> BalanceDelta:
    return BalanceDelta("tradie_1", FinanceField.ON_HOLD, Decimal("127.50"))


class TestConfig:
    def test_shipped_config_clean(self) -> None:
        assert check_config(PolicyResolver.from_config_dir(CONFIG_DIR)) == []

    def test_bad_calendar_order(self) -> None:
        params = json.loads((CONFIG_DIR / PARAMS_FILENAME).read_text(encoding="utf-8"))
        params["calendar"]["slot_start_hours"]["evening"] = 10
        errors = check_config(PolicyResolver(params))
        assert any("strictly increasing" in e for e in errors)


class TestStore:
    def test_consistent_store(self) -> None:
        store = DocumentStore()
        store.commit(
            store.batch().create_job(_paid_job()).add_transaction(_payment()).apply_delta(_hold())
        )
        assert check_store(store) == []

    def test_empty_store(self) -> None:
        assert check_store(DocumentStore()) == []

    def test_unbalanced_split(self) -> None:
        store = DocumentStore()
        store.commit(
            store.batch()
            .create_job(_paid_job(commission=Decimal("20.00")))
            .add_transaction(_payment())
            .apply_delta(_hold())
        )
        assert any("tradie_amount + commission" in e for e in check_store(store))

    def test_on_hold_drift(self) -> None:
        store = DocumentStore()
        store.commit(
            store.batch()
            .create_job(_paid_job())
            .add_transaction(_payment())
            .apply_delta(_hold())
            .apply_delta(BalanceDelta("tradie_1", FinanceField.ON_HOLD, Decimal("1")))
        )
        assert check_store(store) == ["tradie_1: onHoldBalance 128.50 != 127.50"]

    def test_missing_payment_transaction(self) -> None:
        store = DocumentStore()
        store.commit(store.batch().create_job(_paid_job()).apply_delta(_hold()))
        assert check_store(store) == ["job_1: expected 1 payment transaction, found 0"]

    def test_settled_transaction_on_uncompleted_job(self) -> None:
        store = DocumentStore()
        store.commit(
            store.batch()
            .create_job(_paid_job())
            .add_transaction(_payment(TransactionStatus.COMPLETED))
            .apply_delta(_hold())
        )
        assert any("expected onHold" in e for e in check_store(store))

    def test_paid_status_without_snapshot(self) -> None:
        store = DocumentStore()
        store.commit(store.batch().create_job(_paid_job(
            payment_amount=None, commission=None, tradie_amount=None,
        )))
        assert check_store(store) == ["job_1: InProgress without a payment snapshot"]

    def test_archived_without_invoice(self) -> None:
        store = DocumentStore()
        store.commit(store.batch().create_job(Job(
            job_id="job_2", client_uid="client_1", tradie_uid="tradie_1",
            title="x", status=JobStatus.COMPLETED, archived=True,
        )))
        assert check_store(store) == ["job_2: archived without an invoice ID"]


class TestTool:
    def test_clean_without_state(self, tmp_path: Path) -> None:
        assert check(CONFIG_DIR, tmp_path / STATE_FILENAME) == 0

    def test_reports_bad_state(self, tmp_path: Path, capsys) -> None:
        path = tmp_path / STATE_FILENAME
        store = DocumentStore(path)
        store.commit(store.batch().create_job(_paid_job()).apply_delta(_hold()))
        assert check(CONFIG_DIR, path) == 1
        out = capsys.readouterr().out
        assert "Invariant check failed:" in out
        assert "- job_1: expected 1 payment transaction, found 0" in out

    def test_missing_config(self, tmp_path: Path) -> None:
        assert check(tmp_path, tmp_path / STATE_FILENAME) == 1
