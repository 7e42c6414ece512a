"""Jobledger CLI — command-line interface for the job lifecycle and escrow ledger.

Usage:
    python -m jobledger.cli status
    python -m jobledger.cli register-profile --uid t1 --name "Tam" --role tradie --rate 40
    python -m jobledger.cli request-job --client c1 --tradie t1 --title "Fix tap" --hours 2
    python -m jobledger.cli act --job job_abc --actor t1 --action submit_quote \\
        --field hourly_rate=50 --field estimated_hours=3
    python -m jobledger.cli review --job job_abc --reviewer c1 --rating 5
    python -m jobledger.cli check-invariants

Config and data directories default to ``config/`` and ``data/`` and can
be overridden with JOBLEDGER_CONFIG_DIR / JOBLEDGER_DATA_DIR, read from
the environment or a ``.env`` file in the working directory.
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any

from dotenv import find_dotenv, load_dotenv

from jobledger import invariants
from jobledger.errors import JobError
from jobledger.models.job import ActorRole, JobAction
from jobledger.persistence import serializers
from jobledger.persistence.event_log import EventLog
from jobledger.persistence.store import STATE_FILENAME, DocumentStore
from jobledger.policy.resolver import PolicyResolver
from jobledger.scheduling import ManualScheduler
from jobledger.service import JobService


DEFAULT_CONFIG = Path(__file__).resolve().parents[2] / "config"
DEFAULT_DATA = Path(__file__).resolve().parents[2] / "data"


def _make_service(args: argparse.Namespace) -> tuple[JobService, ManualScheduler]:
    """Create a JobService with durable persistence.

    The auto-advance after payment is run by the command itself, so the
    scheduler is a manual one.
    """
    data_dir: Path = args.data
    data_dir.mkdir(parents=True, exist_ok=True)
    resolver = PolicyResolver.from_config_dir(args.config)
    scheduler = ManualScheduler()
    service = JobService(
        resolver,
        store=DocumentStore(storage_path=data_dir / STATE_FILENAME),
        event_log=EventLog(storage_path=data_dir / "events.jsonl"),
        scheduler=scheduler,
    )
    return service, scheduler


def _parse_fields(pairs: list[str]) -> dict[str, Any]:
    payload: dict[str, Any] = {}
    for pair in pairs or []:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise ValueError(f"Expected key=value, got {pair!r}")
        if key == "photos":
            payload[key] = [p for p in value.split(",") if p]
        else:
            payload[key] = value
    return payload


def _fail(message: Any) -> int:
    print(f"Failed: {message}", file=sys.stderr)
    return 1


def _print_job(job: Any, warning: Any = None) -> None:
    print(f"{job.job_id}: {job.status.value}")
    if warning:
        print(f"Warning: {warning}", file=sys.stderr)


def cmd_status(args: argparse.Namespace) -> int:
    service, _ = _make_service(args)
    print(json.dumps(service.status(), indent=2))
    return 0


def cmd_register_profile(args: argparse.Namespace) -> int:
    service, _ = _make_service(args)
    try:
        profile = service.register_profile(args.uid, args.name, args.role, args.rate)
    except JobError as e:
        return _fail(e)
    print(f"Registered {profile.role}: {profile.uid}")
    return 0


def cmd_request_job(args: argparse.Namespace) -> int:
    service, _ = _make_service(args)
    try:
        result = service.request_job(
            service.party(args.client),
            service.party(args.tradie),
            args.title,
            description=args.description,
            estimated_hours=args.hours,
            hourly_rate=args.rate,
            urgency=args.urgency,
        )
    except JobError as e:
        return _fail(e)
    _print_job(result.job, result.warning)
    return 0


def cmd_post_advert(args: argparse.Namespace) -> int:
    service, _ = _make_service(args)
    try:
        advert = service.post_advert(
            service.party(args.client), args.title, args.description, args.budget,
        )
    except JobError as e:
        return _fail(e)
    print(f"Posted advert: {advert.advert_id}")
    return 0


def cmd_accept_advert(args: argparse.Namespace) -> int:
    service, _ = _make_service(args)
    try:
        result = service.accept_advert(service.party(args.tradie), args.advert)
    except JobError as e:
        return _fail(e)
    _print_job(result.job, result.warning)
    return 0


def cmd_act(args: argparse.Namespace) -> int:
    service, scheduler = _make_service(args)
    try:
        payload = _parse_fields(args.field)
    except ValueError as e:
        return _fail(e)
    try:
        result = service.act(args.job, args.actor, JobAction(args.action), payload)
        scheduler.run_pending()
        job = service.get_job(args.job)
    except JobError as e:
        return _fail(e)
    _print_job(job, result.warning)
    return 0


def cmd_review(args: argparse.Namespace) -> int:
    service, _ = _make_service(args)
    try:
        result = service.submit_review(args.job, args.reviewer, args.rating, args.comment)
    except JobError as e:
        return _fail(e)
    _print_job(result.job, result.warning)
    if result.job.archived:
        print(f"Archived with invoice {result.job.invoice_id}")
    return 0


def cmd_cancel(args: argparse.Namespace) -> int:
    service, _ = _make_service(args)
    try:
        result = service.cancel_or_dispute(args.job, args.actor, args.reason)
    except JobError as e:
        return _fail(e)
    _print_job(result.job, result.warning)
    return 0


def cmd_withdraw(args: argparse.Namespace) -> int:
    service, _ = _make_service(args)
    try:
        result = service.withdraw(args.tradie, args.amount, args.method)
    except JobError as e:
        return _fail(e)
    print(
        f"Withdrawal {result.transaction.transaction_id}: "
        f"{-result.transaction.amount} via {args.method} (pending)"
    )
    return 0


def cmd_pending(args: argparse.Namespace) -> int:
    service, _ = _make_service(args)
    print(service.pending_action_count(args.uid, ActorRole(args.role)))
    return 0


def cmd_balance(args: argparse.Namespace) -> int:
    service, _ = _make_service(args)
    print(json.dumps(serializers.finances_to_dict(service.finances(args.uid)), indent=2))
    return 0


def cmd_show_job(args: argparse.Namespace) -> int:
    service, _ = _make_service(args)
    try:
        job = service.get_job(args.job)
    except JobError as e:
        return _fail(e)
    data = serializers.job_to_dict(job)
    data["progress"] = {k: v.value for k, v in service.job_progress(args.job).items()}
    print(json.dumps(data, indent=2))
    return 0


def cmd_check_invariants(args: argparse.Namespace) -> int:
    """Run config and stored-record invariant checks."""
    try:
        resolver = PolicyResolver.from_config_dir(args.config)
    except (OSError, ValueError) as e:
        return _fail(e)
    errors = invariants.check_config(resolver)
    state_path = args.data / STATE_FILENAME
    if state_path.exists():
        errors.extend(invariants.check_store(DocumentStore(storage_path=state_path)))
    if errors:
        print("Invariant check failed:", file=sys.stderr)
        for err in errors:
            print(f"- {err}", file=sys.stderr)
        return 1
    print("Invariant check passed.")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="jobledger",
        description="Job lifecycle and escrow ledger CLI",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=Path(os.environ.get("JOBLEDGER_CONFIG_DIR", DEFAULT_CONFIG)),
        help="Path to config directory (default: config/)",
    )
    parser.add_argument(
        "--data",
        type=Path,
        default=Path(os.environ.get("JOBLEDGER_DATA_DIR", DEFAULT_DATA)),
        help="Path to data directory (default: data/)",
    )
    sub = parser.add_subparsers(dest="command")

    # status
    sub.add_parser("status", help="Show job and ledger summary")

    # register-profile
    p_reg = sub.add_parser("register-profile", help="Register or update a profile")
    p_reg.add_argument("--uid", required=True, help="User ID")
    p_reg.add_argument("--name", default="", help="Display name")
    p_reg.add_argument("--role", required=True, choices=["client", "tradie"])
    p_reg.add_argument("--rate", help="Hourly rate (Decimal, tradies)")

    # request-job
    p_req = sub.add_parser("request-job", help="Request a job from a tradie")
    p_req.add_argument("--client", required=True, help="Client user ID")
    p_req.add_argument("--tradie", required=True, help="Tradie user ID")
    p_req.add_argument("--title", required=True, help="Job title")
    p_req.add_argument("--description", default="", help="Job description")
    p_req.add_argument("--hours", default="2", help="Estimated hours (default: 2)")
    p_req.add_argument("--rate", help="Hourly rate (default: tradie's profile rate)")
    p_req.add_argument("--urgency", default="standard", help="Urgency (default: standard)")

    # post-advert
    p_adv = sub.add_parser("post-advert", help="Post a job to the job board")
    p_adv.add_argument("--client", required=True, help="Client user ID")
    p_adv.add_argument("--title", required=True, help="Job title")
    p_adv.add_argument("--description", default="", help="Job description")
    p_adv.add_argument("--budget", default="", help="Budget (display text)")

    # accept-advert
    p_acc = sub.add_parser("accept-advert", help="Accept a job-board advert")
    p_acc.add_argument("--tradie", required=True, help="Tradie user ID")
    p_acc.add_argument("--advert", required=True, help="Advert ID")

    # act
    p_act = sub.add_parser("act", help="Apply a lifecycle action to a job")
    p_act.add_argument("--job", required=True, help="Job ID")
    p_act.add_argument("--actor", required=True, help="Acting user ID")
    p_act.add_argument(
        "--action", required=True,
        choices=[a.value for a in JobAction],
        help="Lifecycle action",
    )
    p_act.add_argument(
        "--field", action="append", default=[],
        help="Payload field as key=value (repeatable; photos comma-separated)",
    )

    # review
    p_rev = sub.add_parser("review", help="Review the other party of a completed job")
    p_rev.add_argument("--job", required=True, help="Job ID")
    p_rev.add_argument("--reviewer", required=True, help="Reviewer user ID")
    p_rev.add_argument("--rating", required=True, type=int, help="Rating (1-5)")
    p_rev.add_argument("--comment", default="", help="Review comment")

    # cancel
    p_can = sub.add_parser("cancel", help="Cancel, dispute or report a job")
    p_can.add_argument("--job", required=True, help="Job ID")
    p_can.add_argument("--actor", required=True, help="Acting user ID")
    p_can.add_argument("--reason", required=True, help="Reason")

    # withdraw
    p_wd = sub.add_parser("withdraw", help="Withdraw from available balance")
    p_wd.add_argument("--tradie", required=True, help="Tradie user ID")
    p_wd.add_argument("--amount", required=True, help="Amount (Decimal)")
    p_wd.add_argument("--method", default="stripe", help="Payout method (default: stripe)")

    # pending
    p_pen = sub.add_parser("pending", help="Count jobs awaiting a user's action")
    p_pen.add_argument("--uid", required=True, help="User ID")
    p_pen.add_argument("--role", required=True, choices=["client", "tradie"])

    # balance
    p_bal = sub.add_parser("balance", help="Show a user's finances")
    p_bal.add_argument("--uid", required=True, help="User ID")

    # show-job
    p_show = sub.add_parser("show-job", help="Show a job record and its progress")
    p_show.add_argument("--job", required=True, help="Job ID")

    # check-invariants
    sub.add_parser("check-invariants", help="Run config and ledger invariant checks")

    return parser


def main(argv: list[str] | None = None) -> int:
    load_dotenv(find_dotenv(usecwd=True))
    logging.basicConfig(level=os.environ.get("JOBLEDGER_LOG_LEVEL", "WARNING").upper())
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    commands = {
        "status": cmd_status,
        "register-profile": cmd_register_profile,
        "request-job": cmd_request_job,
        "post-advert": cmd_post_advert,
        "accept-advert": cmd_accept_advert,
        "act": cmd_act,
        "review": cmd_review,
        "cancel": cmd_cancel,
        "withdraw": cmd_withdraw,
        "pending": cmd_pending,
        "balance": cmd_balance,
        "show-job": cmd_show_job,
        "check-invariants": cmd_check_invariants,
    }

    handler = commands.get(args.command)
    if handler is None:
        print(f"Unknown command: {args.command}", file=sys.stderr)
        return 1

    return handler(args)


if __name__ == "__main__":
    raise SystemExit(main())
