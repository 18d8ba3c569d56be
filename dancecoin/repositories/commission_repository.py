from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from dancecoin.models.base import utcnow
from dancecoin.models.commission import CourseCommission
from dancecoin.repositories.base import BaseRepository
from dancecoin.schemas.commission import CommissionResponse


def commission_id(course_id: str, trainer_id: str) -> str:
    return f"{course_id}_{trainer_id}"


class CommissionRepository(BaseRepository[CourseCommission, CommissionResponse]):
    """강좌 수수료 리포지토리"""

    def __init__(self, db: Session):
        super().__init__(CourseCommission, CommissionResponse, db)

    def upsert(
        self,
        course_id: str,
        trainer_id: str,
        commission_percent: int,
        admin_id: str,
        notes: Optional[str] = None,
    ) -> CourseCommission:
        """(강좌, 트레이너) 조합당 하나 - 있으면 갱신, 없으면 생성"""
        record = (
            self.db.query(CourseCommission)
            .filter(
                CourseCommission.course_id == course_id,
                CourseCommission.trainer_id == trainer_id,
            )
            .first()
        )

        if record is None:
            record = CourseCommission(
                id=commission_id(course_id, trainer_id),
                course_id=course_id,
                trainer_id=trainer_id,
                commission_percent=commission_percent,
                is_active=True,
                notes=notes,
                created_by=admin_id,
                last_updated_by=admin_id,
            )
            self.db.add(record)
        else:
            record.commission_percent = commission_percent
            record.is_active = True
            if notes is not None:
                record.notes = notes
            record.last_updated_by = admin_id
            record.updated_at = utcnow()

        self.db.flush()
        return record

    def set_active(
        self, record: CourseCommission, is_active: bool, admin_id: str
    ) -> CourseCommission:
        record.is_active = is_active
        record.last_updated_by = admin_id
        record.updated_at = utcnow()
        self.db.flush()
        return record

    def list_for_course(self, course_id: str) -> List[CourseCommission]:
        return (
            self.db.query(CourseCommission)
            .filter(CourseCommission.course_id == course_id)
            .order_by(CourseCommission.trainer_id)
            .all()
        )

    def active_for_course(self, course_id: str) -> List[CourseCommission]:
        return (
            self.db.query(CourseCommission)
            .filter(
                CourseCommission.course_id == course_id,
                CourseCommission.is_active.is_(True),
            )
            .order_by(CourseCommission.trainer_id)
            .all()
        )

    def active_total_percent(self, course_id: str) -> int:
        result = (
            self.db.query(func.sum(CourseCommission.commission_percent))
            .filter(
                CourseCommission.course_id == course_id,
                CourseCommission.is_active.is_(True),
            )
            .scalar()
        )
        return int(result or 0)
