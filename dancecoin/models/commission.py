from sqlalchemy import Boolean, Column, Integer, String, Text
from sqlalchemy.schema import CheckConstraint, UniqueConstraint

from dancecoin.models.base import BaseModel


class CourseCommission(BaseModel):
    """
    강좌별 트레이너 수수료 설정

    - 한 강좌에 여러 트레이너가 있을 수 있음 (다중 분배)
    - id는 "{course_id}_{trainer_id}" 형식으로 조합당 하나
    - 비활성화는 삭제가 아니라 is_active=False (감사 추적 유지)
    - 강좌의 활성 수수료 합계가 100%를 넘어도 허용 (경고만 표시)
    """

    __tablename__ = "course_commissions"
    __table_args__ = (
        UniqueConstraint("course_id", "trainer_id", name="uq_course_commissions_course_trainer"),
        CheckConstraint(
            "commission_percent >= 0 AND commission_percent <= 100",
            name="ck_course_commissions_percent",
        ),
    )

    id = Column(String(300), primary_key=True)
    course_id = Column(String(128), nullable=False, index=True)
    trainer_id = Column(String(128), nullable=False, index=True)
    commission_percent = Column(Integer, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    notes = Column(Text, nullable=True)
    created_by = Column(String(128), nullable=False)
    last_updated_by = Column(String(128), nullable=False)
