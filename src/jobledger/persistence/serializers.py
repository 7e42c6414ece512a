"""Record (de)serialization — camelCase dicts for storage and the wire.

Money round-trips as decimal strings and timestamps as ISO-8601 UTC, so
a stored document reloads into equal records.
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional

from jobledger.models.job import (
    Advert,
    Booking,
    Job,
    JobReport,
    JobSource,
    JobStatus,
    Quote,
    ServiceLocation,
)
from jobledger.models.ledger import (
    FinanceField,
    Finances,
    Transaction,
    TransactionStatus,
    TransactionType,
)
from jobledger.models.profile import Profile
from jobledger.models.review import Review, ReviewerRole


# Job timestamp attribute → wire name
_JOB_STAMPS: dict[str, str] = {
    "created_utc": "createdAt",
    "approved_utc": "approvedAt",
    "accepted_utc": "acceptedAt",
    "info_requested_utc": "infoRequestedAt",
    "info_provided_utc": "infoProvidedAt",
    "quoted_utc": "quotedAt",
    "quote_accepted_utc": "quoteAcceptedAt",
    "quote_declined_utc": "quoteDeclinedAt",
    "booking_requested_utc": "bookingRequestedAt",
    "booking_confirmed_utc": "bookingConfirmedAt",
    "payment_completed_utc": "paymentCompletedAt",
    "started_utc": "startedAt",
    "completed_utc": "completedAt",
    "cancelled_utc": "cancelledAt",
    "declined_utc": "declinedAt",
    "archived_utc": "archivedAt",
}

_JOB_DECIMALS: dict[str, str] = {
    "hourly_rate": "hourlyRate",
    "estimated_hours": "estimatedHours",
    "payment_amount": "paymentAmount",
    "commission": "commission",
    "tradie_amount": "tradieAmount",
}

_JOB_PLAIN: dict[str, str] = {
    "job_id": "jobId",
    "client_uid": "clientUid",
    "tradie_uid": "tradieUid",
    "title": "title",
    "description": "description",
    "budget": "budget",
    "urgency": "urgency",
    "client_name": "clientName",
    "tradie_name": "tradieName",
    "info_photos": "infoPhotos",
    "info_description": "infoDescription",
    "awaiting_review": "awaitingReview",
    "client_reviewed": "clientReviewed",
    "tradie_reviewed": "tradieReviewed",
    "archived": "archived",
    "invoice_id": "invoiceId",
    "cancel_reason": "cancelReason",
    "decline_reason": "declineReason",
    "cancelled_by": "cancelledBy",
    "version": "version",
}


def format_ts(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def parse_ts(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def _money(value: Optional[Decimal]) -> Optional[str]:
    return None if value is None else str(value)


def _decimal(value: Any) -> Optional[Decimal]:
    return None if value is None else Decimal(str(value))


# ----------------------------------------------------------------------
# Jobs
# ----------------------------------------------------------------------

def job_to_dict(job: Job) -> dict[str, Any]:
    data: dict[str, Any] = {}
    for attr, key in _JOB_PLAIN.items():
        value = getattr(job, attr)
        data[key] = list(value) if isinstance(value, list) else value
    for attr, key in _JOB_DECIMALS.items():
        data[key] = _money(getattr(job, attr))
    for attr, key in _JOB_STAMPS.items():
        data[key] = format_ts(getattr(job, attr))
    data["status"] = job.status.value
    data["source"] = job.source.value
    data["quote"] = None if job.quote is None else {
        "hourlyRate": str(job.quote.hourly_rate),
        "estimatedHours": str(job.quote.estimated_hours),
        "total": str(job.quote.total),
        "notes": job.quote.notes,
    }
    data["booking"] = None if job.booking is None else {
        "date": job.booking.date,
        "timeSlot": job.booking.time_slot,
    }
    data["serviceLocation"] = None if job.service_location is None else {
        "address": job.service_location.address,
        "phone": job.service_location.phone,
        "email": job.service_location.email,
    }
    data["reports"] = [
        {
            "reason": r.reason,
            "reportedBy": r.reported_by,
            "reportedAt": format_ts(r.reported_utc),
        }
        for r in job.reports
    ]
    return data


def job_from_dict(data: dict[str, Any]) -> Job:
    kwargs: dict[str, Any] = {}
    for attr, key in _JOB_PLAIN.items():
        if key in data:
            kwargs[attr] = data[key]
    for attr, key in _JOB_DECIMALS.items():
        kwargs[attr] = _decimal(data.get(key))
    for attr, key in _JOB_STAMPS.items():
        kwargs[attr] = parse_ts(data.get(key))
    kwargs["status"] = JobStatus(data["status"])
    kwargs["source"] = JobSource(data.get("source", JobSource.DIRECT.value))

    quote = data.get("quote")
    if quote:
        kwargs["quote"] = Quote(
            hourly_rate=Decimal(str(quote["hourlyRate"])),
            estimated_hours=Decimal(str(quote["estimatedHours"])),
            total=Decimal(str(quote["total"])),
            notes=quote.get("notes", ""),
        )
    booking = data.get("booking")
    if booking:
        kwargs["booking"] = Booking(date=booking["date"], time_slot=booking["timeSlot"])
    location = data.get("serviceLocation")
    if location:
        kwargs["service_location"] = ServiceLocation(
            address=location["address"],
            phone=location["phone"],
            email=location.get("email", ""),
        )
    kwargs["reports"] = [
        JobReport(
            reason=r["reason"],
            reported_by=r["reportedBy"],
            reported_utc=parse_ts(r["reportedAt"]),
        )
        for r in data.get("reports") or []
    ]
    return Job(**kwargs)


# ----------------------------------------------------------------------
# Ledger
# ----------------------------------------------------------------------

def finances_to_dict(finances: Finances) -> dict[str, str]:
    return {f.value: str(finances.get(f)) for f in FinanceField}


def finances_from_dict(data: Optional[dict[str, Any]]) -> Finances:
    data = data or {}
    return Finances(
        on_hold_balance=Decimal(str(data.get(FinanceField.ON_HOLD.value, "0"))),
        available_balance=Decimal(str(data.get(FinanceField.AVAILABLE.value, "0"))),
        total_earnings=Decimal(str(data.get(FinanceField.TOTAL_EARNINGS.value, "0"))),
        total_commission_paid=Decimal(
            str(data.get(FinanceField.TOTAL_COMMISSION_PAID.value, "0"))
        ),
    )


def transaction_to_dict(tx: Transaction) -> dict[str, Any]:
    return {
        "transactionId": tx.transaction_id,
        "tradieUid": tx.tradie_uid,
        "type": tx.type.value,
        "amount": str(tx.amount),
        "status": tx.status.value,
        "createdAt": format_ts(tx.created_utc),
        "jobId": tx.job_id,
        "jobTitle": tx.job_title,
        "commission": str(tx.commission),
        "method": tx.method,
    }


def transaction_from_dict(data: dict[str, Any]) -> Transaction:
    return Transaction(
        transaction_id=data["transactionId"],
        tradie_uid=data["tradieUid"],
        type=TransactionType(data["type"]),
        amount=Decimal(str(data["amount"])),
        status=TransactionStatus(data["status"]),
        created_utc=parse_ts(data["createdAt"]),
        job_id=data.get("jobId"),
        job_title=data.get("jobTitle", ""),
        commission=Decimal(str(data.get("commission", "0"))),
        method=data.get("method"),
    )


# ----------------------------------------------------------------------
# Profiles, reviews, adverts
# ----------------------------------------------------------------------

def profile_to_dict(profile: Profile) -> dict[str, Any]:
    return {
        "uid": profile.uid,
        "displayName": profile.display_name,
        "role": profile.role,
        "hourlyRate": _money(profile.hourly_rate),
        "finances": finances_to_dict(profile.finances),
        "workCalendar": profile.work_calendar,
        "rating": profile.rating,
        "reviews": profile.reviews,
    }


def profile_from_dict(data: dict[str, Any]) -> Profile:
    return Profile(
        uid=data["uid"],
        display_name=data.get("displayName", ""),
        role=data.get("role", ""),
        hourly_rate=_decimal(data.get("hourlyRate")),
        finances=finances_from_dict(data.get("finances")),
        work_calendar=dict(data.get("workCalendar") or {}),
        rating=float(data.get("rating", 0.0)),
        reviews=int(data.get("reviews", 0)),
    )


def review_to_dict(review: Review) -> dict[str, Any]:
    return {
        "jobId": review.job_id,
        "reviewedUid": review.reviewed_uid,
        "reviewerUid": review.reviewer_uid,
        "reviewerRole": review.reviewer_role.value,
        "rating": review.rating,
        "comment": review.comment,
        "createdAt": format_ts(review.created_utc),
        "reviewerName": review.reviewer_name,
        "reviewedName": review.reviewed_name,
    }


def review_from_dict(data: dict[str, Any]) -> Review:
    return Review(
        job_id=data["jobId"],
        reviewed_uid=data["reviewedUid"],
        reviewer_uid=data["reviewerUid"],
        reviewer_role=ReviewerRole(data["reviewerRole"]),
        rating=int(data["rating"]),
        comment=data.get("comment", ""),
        created_utc=parse_ts(data["createdAt"]),
        reviewer_name=data.get("reviewerName", ""),
        reviewed_name=data.get("reviewedName", ""),
    )


def advert_to_dict(advert: Advert) -> dict[str, Any]:
    return {
        "advertId": advert.advert_id,
        "clientUid": advert.client_uid,
        "clientName": advert.client_name,
        "title": advert.title,
        "description": advert.description,
        "budget": advert.budget,
        "createdAt": format_ts(advert.created_utc),
    }


def advert_from_dict(data: dict[str, Any]) -> Advert:
    return Advert(
        advert_id=data["advertId"],
        client_uid=data["clientUid"],
        title=data["title"],
        description=data.get("description", ""),
        budget=data.get("budget", ""),
        client_name=data.get("clientName", ""),
        created_utc=parse_ts(data.get("createdAt")),
    )
