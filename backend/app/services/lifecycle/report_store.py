"""
Report Store

Owns CitizenReport entities: creation, lookup, listing and deletion.

AUTHORITY: CITIZEN
- A citizen creates reports (always PENDING, never rewarded at creation)
- A citizen may delete their own report while it is still PENDING
"""
from datetime import datetime, timedelta
from math import ceil
from typing import Any, Dict, List, Optional, Tuple
from uuid import uuid4
import logging

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from ...models.db_models import (
    ActorType, AppealStatus, CitizenReportDB, ReportLocationDB, ReportStatus,
    ViolationType,
)
from .errors import InvalidStateError, LifecycleError, NotFoundError, NotPermittedError, ValidationError
from .state_machine import ReportStateMachine

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100


def paginate(query, page: int = 1, limit: int = DEFAULT_PAGE_SIZE) -> Tuple[List[Any], Dict[str, int]]:
    """Apply offset pagination. Returns (items, pagination)."""
    page = max(1, page or 1)
    limit = min(max(1, limit or DEFAULT_PAGE_SIZE), MAX_PAGE_SIZE)
    total = query.count()
    items = query.offset((page - 1) * limit).limit(limit).all()
    return items, {
        "page": page,
        "limit": limit,
        "total": total,
        "total_pages": ceil(total / limit) if total else 0,
    }


def normalize_plate(plate: Optional[str]) -> str:
    """'  dha-1234 ' -> 'DHA-1234'"""
    return " ".join((plate or "").split()).upper()


class ReportStore:
    """
    Repository and rules for citizen reports.
    Every mutating call is one committed transaction.
    """

    def __init__(self, db_session: Session):
        """Initialize with database session."""
        self.db = db_session
        self.state_machine = ReportStateMachine(db_session)

    # =========================================================================
    # CREATE
    # =========================================================================

    def create(
        self,
        citizen_id: str,
        vehicle_plate: str,
        violation_type,
        evidence_urls: List[str],
        location_data: Optional[Dict[str, Any]] = None,
        description: Optional[str] = None,
    ) -> CitizenReportDB:
        """
        Create a new PENDING report.

        Raises ValidationError if the plate or violation type is blank or no
        evidence is attached.
        """
        plate = normalize_plate(vehicle_plate)
        if not plate:
            raise ValidationError("vehiclePlate is required")
        if not violation_type:
            raise ValidationError("violationType is required")
        try:
            violation_type = ViolationType(violation_type)
        except ValueError:
            raise ValidationError(f"Unknown violationType: {violation_type}")

        evidence = [url.strip() for url in (evidence_urls or []) if url and url.strip()]
        if not evidence:
            raise ValidationError("At least one evidence item is required")

        location = self._build_location(location_data) if location_data else None

        report = CitizenReportDB(
            id=str(uuid4()),
            citizen_id=citizen_id,
            vehicle_plate=plate,
            violation_type=violation_type,
            description=(description or "").strip() or None,
            evidence_urls=evidence,
            location_id=location.id if location else None,
            status=ReportStatus.PENDING,
            appeal_submitted=False,
            additional_penalty_applied=False,
        )
        self.db.add(report)

        self.state_machine.log_event(
            report_id=report.id,
            event_type="report_created",
            actor=ActorType.CITIZEN,
            actor_id=citizen_id,
            to_state=ReportStatus.PENDING.value,
            description=f"Report submitted for {plate} ({violation_type.value})",
            metadata={"evidence_count": len(evidence)},
        )

        self.db.commit()
        self.db.refresh(report)

        logger.info(f"Report {report.id} created by {citizen_id} for {plate}")
        return report

    def _build_location(self, data: Dict[str, Any]) -> ReportLocationDB:
        try:
            latitude = float(data["latitude"])
            longitude = float(data["longitude"])
        except (KeyError, TypeError, ValueError):
            raise ValidationError("locationData requires numeric latitude and longitude")
        if not -90 <= latitude <= 90 or not -180 <= longitude <= 180:
            raise ValidationError("locationData coordinates out of range")
        if not (data.get("address") or "").strip():
            raise ValidationError("locationData.address is required")

        location = ReportLocationDB(
            id=str(uuid4()),
            latitude=latitude,
            longitude=longitude,
            address=data["address"].strip(),
            city=data.get("city"),
            district=data.get("district"),
            division=data.get("division"),
        )
        self.db.add(location)
        return location

    # =========================================================================
    # READ
    # =========================================================================

    def get(self, report_id: str) -> CitizenReportDB:
        report = self.db.get(CitizenReportDB, report_id)
        if report is None:
            raise NotFoundError(f"Report {report_id} not found")
        return report

    def _filtered(
        self,
        query,
        search: Optional[str] = None,
        status: Optional[ReportStatus] = None,
        violation_type: Optional[ViolationType] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
    ):
        if search:
            pattern = f"%{search.strip()}%"
            query = query.filter(or_(
                CitizenReportDB.vehicle_plate.ilike(pattern),
                CitizenReportDB.description.ilike(pattern),
            ))
        if status:
            query = query.filter(CitizenReportDB.status == status)
        if violation_type:
            query = query.filter(CitizenReportDB.violation_type == violation_type)
        if date_from:
            query = query.filter(CitizenReportDB.created_at >= date_from)
        if date_to:
            query = query.filter(CitizenReportDB.created_at <= date_to)
        return query

    def list_for_citizen(self, citizen_id: str, page: int = 1, limit: int = DEFAULT_PAGE_SIZE, **filters):
        query = self.db.query(CitizenReportDB).filter(CitizenReportDB.citizen_id == citizen_id)
        query = self._filtered(query, **filters).order_by(CitizenReportDB.created_at.desc())
        return paginate(query, page, limit)

    def list_pending(self, page: int = 1, limit: int = DEFAULT_PAGE_SIZE, **filters):
        """Review queue, oldest first."""
        filters.pop("status", None)
        query = self.db.query(CitizenReportDB).filter(CitizenReportDB.status == ReportStatus.PENDING)
        query = self._filtered(query, **filters).order_by(CitizenReportDB.created_at.asc())
        return paginate(query, page, limit)

    def list_pending_appeals(self, page: int = 1, limit: int = DEFAULT_PAGE_SIZE, **filters):
        filters.pop("status", None)
        query = self.db.query(CitizenReportDB).filter(
            CitizenReportDB.status == ReportStatus.REJECTED,
            CitizenReportDB.appeal_submitted.is_(True),
            CitizenReportDB.appeal_status == AppealStatus.PENDING,
        )
        query = self._filtered(query, **filters).order_by(CitizenReportDB.appeal_submitted_at.asc())
        return paginate(query, page, limit)

    def list_all(self, page: int = 1, limit: int = DEFAULT_PAGE_SIZE, **filters):
        query = self._filtered(self.db.query(CitizenReportDB), **filters)
        return paginate(query.order_by(CitizenReportDB.created_at.desc()), page, limit)

    # =========================================================================
    # STATS
    # =========================================================================

    def _status_counts(self, query) -> Dict[ReportStatus, int]:
        rows = query.with_entities(CitizenReportDB.status, func.count(CitizenReportDB.id)).group_by(
            CitizenReportDB.status
        ).all()
        return {status: count for status, count in rows}

    def stats_for_citizen(self, citizen_id: str) -> Dict[str, Any]:
        query = self.db.query(CitizenReportDB).filter(CitizenReportDB.citizen_id == citizen_id)
        counts = self._status_counts(query)
        approved = counts.get(ReportStatus.APPROVED, 0)
        rejected = counts.get(ReportStatus.REJECTED, 0)
        reviewed = approved + rejected

        rewards = query.with_entities(func.coalesce(func.sum(CitizenReportDB.reward_amount), 0.0)).scalar()
        penalties = query.with_entities(
            func.coalesce(func.sum(CitizenReportDB.penalty_amount), 0.0)
            + func.coalesce(func.sum(CitizenReportDB.additional_penalty_amount), 0.0)
        ).scalar()

        return {
            "total_reports": sum(counts.values()),
            "pending_reports": counts.get(ReportStatus.PENDING, 0),
            "approved_reports": approved,
            "rejected_reports": rejected,
            "total_rewards_earned": round(float(rewards), 2),
            "total_penalties_paid": round(float(penalties), 2),
            "approval_rate": round(approved / reviewed * 100, 1) if reviewed else 0.0,
        }

    def admin_stats(self, trend_days: int = 30) -> Dict[str, Any]:
        query = self.db.query(CitizenReportDB)
        counts = self._status_counts(query)
        approved = counts.get(ReportStatus.APPROVED, 0)
        rejected = counts.get(ReportStatus.REJECTED, 0)
        reviewed = approved + rejected

        by_type = query.with_entities(
            CitizenReportDB.violation_type, func.count(CitizenReportDB.id)
        ).group_by(CitizenReportDB.violation_type).all()

        since = datetime.utcnow() - timedelta(days=trend_days)
        trend: Dict[str, int] = {}
        for (created_at,) in query.with_entities(CitizenReportDB.created_at).filter(
            CitizenReportDB.created_at >= since
        ).all():
            day = created_at.date().isoformat()
            trend[day] = trend.get(day, 0) + 1

        rewards = query.with_entities(func.coalesce(func.sum(CitizenReportDB.reward_amount), 0.0)).scalar()
        penalties = query.with_entities(
            func.coalesce(func.sum(CitizenReportDB.penalty_amount), 0.0)
            + func.coalesce(func.sum(CitizenReportDB.additional_penalty_amount), 0.0)
        ).scalar()

        return {
            "total_reports": sum(counts.values()),
            "pending_reports": counts.get(ReportStatus.PENDING, 0),
            "approved_reports": approved,
            "rejected_reports": rejected,
            "total_rewards_distributed": round(float(rewards), 2),
            "total_penalties_collected": round(float(penalties), 2),
            "approval_rate": round(approved / reviewed * 100, 1) if reviewed else 0.0,
            "reports_by_type": [{"type": t.value, "count": c} for t, c in by_type],
            "reports_by_status": [{"status": s.value, "count": c} for s, c in counts.items()],
            "reports_trend": [{"date": d, "count": c} for d, c in sorted(trend.items())],
        }

    # =========================================================================
    # DELETE
    # =========================================================================

    def delete(self, report_id: str, requester_id: str) -> None:
        """
        Hard-delete a report.

        Raises NotPermittedError unless the requester submitted the report, and
        InvalidStateError unless it is still PENDING.
        """
        try:
            report = self.get(report_id)
            if report.citizen_id != requester_id:
                raise NotPermittedError("Only the reporting citizen can delete this report")
            if not self.state_machine.is_deletable(report.status):
                raise InvalidStateError(f"Cannot delete a {report.status.value} report")

            # Guarded on status so a review landing first wins
            deleted = self.db.query(CitizenReportDB).filter(
                CitizenReportDB.id == report_id,
                CitizenReportDB.status == ReportStatus.PENDING,
            ).delete()
            if deleted != 1:
                raise InvalidStateError(f"Report {report_id} was reviewed before it could be deleted")

            if report.location_id:
                self.db.query(ReportLocationDB).filter(
                    ReportLocationDB.id == report.location_id
                ).delete(synchronize_session=False)

            self.state_machine.log_event(
                report_id=report_id,
                event_type="report_deleted",
                actor=ActorType.CITIZEN,
                actor_id=requester_id,
                from_state=ReportStatus.PENDING.value,
                description="Report withdrawn by citizen before review",
            )
            self.db.commit()
        except LifecycleError:
            self.db.rollback()
            raise

        logger.info(f"Report {report_id} deleted by {requester_id}")
