import enum
import uuid

from sqlalchemy import Column, Integer, String, Float, DateTime, Text, JSON, Enum, ForeignKey, Index, UniqueConstraint, text
from sqlalchemy.orm import relationship

from exceptions import InsufficientBalance, InvalidTransition, RequestValidationError
from extensions import db
from mission_state import MissionProgress, UserMissionStatus, stamp_from, stamp_value
from timezone_utils import isoformat_utc, utcnow


def _new_id():
    return str(uuid.uuid4())


class MissionType(str, enum.Enum):
    ENERGY_SAVING = "ENERGY_SAVING"
    TRANSPORTATION = "TRANSPORTATION"
    WASTE_REDUCTION = "WASTE_REDUCTION"
    RECYCLING = "RECYCLING"
    WATER_CONSERVATION = "WATER_CONSERVATION"
    SUSTAINABLE_CONSUMPTION = "SUSTAINABLE_CONSUMPTION"


class DifficultyLevel(str, enum.Enum):
    EASY = "EASY"
    MEDIUM = "MEDIUM"
    HARD = "HARD"


class MissionStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    INACTIVE = "INACTIVE"


class TransactionType(str, enum.Enum):
    EARNED = "EARNED"
    SPENT = "SPENT"
    REFUNDED = "REFUNDED"


class TransactionStatus(str, enum.Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


class Mission(db.Model):
    __tablename__ = 'missions'

    id = Column(String(36), primary_key=True, default=_new_id)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=False)
    type = Column(Enum(MissionType, name="mission_type"), nullable=False)
    difficulty = Column(Enum(DifficultyLevel, name="difficulty_level"), nullable=False)
    co2_reduction_amount = Column(Float, nullable=False, default=0.0)  # kg CO2
    credit_reward = Column(Integer, nullable=False, default=0)
    required_submissions = Column(Integer, nullable=False, default=1)
    image_url = Column(String(1024))
    instructions = Column(JSON, nullable=False, default=list)
    verification_criteria = Column(JSON, nullable=False, default=list)
    status = Column(Enum(MissionStatus, name="mission_status"), nullable=False, default=MissionStatus.ACTIVE)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f'<Mission {self.id} {self.title!r}>'

    @property
    def is_active(self):
        return self.status == MissionStatus.ACTIVE

    def to_dict(self):
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "type": self.type.value,
            "difficulty": self.difficulty.value,
            "co2ReductionAmount": self.co2_reduction_amount,
            "creditReward": self.credit_reward,
            "requiredSubmissions": self.required_submissions,
            "imageUrl": self.image_url,
            "instructions": list(self.instructions or []),
            "verificationCriteria": list(self.verification_criteria or []),
            "status": self.status.value,
            "createdAt": isoformat_utc(self.created_at),
        }


class UserMission(db.Model):
    __tablename__ = 'user_missions'
    # One row per (user, mission) for its whole life: a completed mission cannot be reassigned.
    __table_args__ = (UniqueConstraint('user_id', 'mission_id', name='uq_user_mission_pair'),)

    id = Column(String(36), primary_key=True, default=_new_id)
    user_id = Column(String(255), nullable=False, index=True)
    mission_id = Column(String(36), ForeignKey('missions.id'), nullable=False)
    status = Column(Enum(UserMissionStatus, name="user_mission_status"), nullable=False, default=UserMissionStatus.ASSIGNED)
    current_progress = Column(Integer, nullable=False, default=0)
    target_progress = Column(Integer, nullable=False, default=1)
    submission_image_urls = Column(JSON, nullable=False, default=list)
    submission_note = Column(Text)
    verification_note = Column(Text)
    submitted_at = Column(DateTime)
    verified_at = Column(DateTime)
    completed_at = Column(DateTime)
    assigned_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow)
    version = Column(Integer, nullable=False)

    mission = relationship('Mission', lazy='joined')

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self):
        return f'<UserMission {self.id} {self.user_id}/{self.mission_id} {self.status}>'

    @property
    def progress(self) -> MissionProgress:
        return MissionProgress(
            status=UserMissionStatus(self.status),
            current_progress=self.current_progress,
            target_progress=self.target_progress,
            submitted=stamp_from(self.submitted_at),
            verified=stamp_from(self.verified_at),
            completed=stamp_from(self.completed_at),
        )

    def apply_progress(self, progress: MissionProgress):
        """Write a validated snapshot back onto the row. Only progress_tracker calls this."""
        self.status = progress.status
        self.current_progress = progress.current_progress
        self.target_progress = progress.target_progress
        self.submitted_at = stamp_value(progress.submitted)
        self.verified_at = stamp_value(progress.verified)
        self.completed_at = stamp_value(progress.completed)
        self.updated_at = utcnow()

    @property
    def remaining_submissions(self):
        return max(0, self.target_progress - self.current_progress)

    def to_dict(self, include_mission=False):
        data = {
            "id": self.id,
            "userId": self.user_id,
            "missionId": self.mission_id,
            "status": UserMissionStatus(self.status).value,
            "currentProgress": self.current_progress,
            "targetProgress": self.target_progress,
            "remainingSubmissions": self.remaining_submissions,
            "submissionImageUrls": list(self.submission_image_urls or []),
            "submissionNote": self.submission_note,
            "verificationNote": self.verification_note,
            "submittedAt": isoformat_utc(self.submitted_at),
            "verifiedAt": isoformat_utc(self.verified_at),
            "completedAt": isoformat_utc(self.completed_at),
            "assignedAt": isoformat_utc(self.assigned_at),
            "isActive": self.status != UserMissionStatus.COMPLETED,
            "isDone": self.status == UserMissionStatus.COMPLETED,
        }
        if include_mission and self.mission is not None:
            data["mission"] = self.mission.to_dict()
        return data


class CarbonCredit(db.Model):
    __tablename__ = 'carbon_credits'

    id = Column(String(36), primary_key=True, default=_new_id)
    user_id = Column(String(255), unique=True, nullable=False)
    balance = Column(Integer, nullable=False, default=0)
    total_earned = Column(Integer, nullable=False, default=0)
    total_spent = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow)
    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def __init__(self, **kwargs):
        kwargs.setdefault('balance', 0)
        kwargs.setdefault('total_earned', 0)
        kwargs.setdefault('total_spent', 0)
        super().__init__(**kwargs)

    def __repr__(self):
        return f'<CarbonCredit {self.user_id} balance={self.balance}>'

    @staticmethod
    def _check_amount(amount, action):
        if not isinstance(amount, int) or isinstance(amount, bool) or amount <= 0:
            raise RequestValidationError(f"{action} amount must be a positive integer")

    def earn(self, amount):
        self._check_amount(amount, "Earn")
        self.balance += amount
        self.total_earned += amount
        self.updated_at = utcnow()

    def can_spend(self, amount):
        return self.balance >= amount

    def spend(self, amount):
        self._check_amount(amount, "Spend")
        if not self.can_spend(amount):
            raise InsufficientBalance(
                "Insufficient carbon credits",
                details={"balance": self.balance, "requested": amount},
            )
        self.balance -= amount
        self.total_spent += amount
        self.updated_at = utcnow()

    def refund(self, amount):
        """Return previously spent credits; cannot refund more than was spent."""
        self._check_amount(amount, "Refund")
        if amount > self.total_spent:
            raise RequestValidationError("Refund exceeds total spent")
        self.balance += amount
        self.total_spent -= amount
        self.updated_at = utcnow()

    def to_dict(self):
        return {
            "userId": self.user_id,
            "balance": self.balance,
            "totalEarned": self.total_earned,
            "totalSpent": self.total_spent,
            "updatedAt": isoformat_utc(self.updated_at),
        }


class CarbonCreditTransaction(db.Model):
    __tablename__ = 'carbon_credit_transactions'
    __table_args__ = (
        # A mission reward is posted at most once per user, whatever the client retries.
        Index(
            'uq_earned_once_per_source', 'user_id', 'source_type', 'source_id',
            unique=True,
            sqlite_where=text("type = 'EARNED'"),
            postgresql_where=text("type = 'EARNED'"),
        ),
    )

    id = Column(String(36), primary_key=True, default=_new_id)
    user_id = Column(String(255), nullable=False, index=True)
    type = Column(Enum(TransactionType, name="transaction_type"), nullable=False)
    amount = Column(Integer, nullable=False)
    description = Column(String(500), nullable=False)
    source_type = Column(String(50), nullable=False)  # 'MISSION', 'REWARD', 'REFUND'
    source_id = Column(String(36))
    status = Column(Enum(TransactionStatus, name="transaction_status"), nullable=False, default=TransactionStatus.PENDING)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow)

    def __init__(self, **kwargs):
        kwargs.setdefault('status', TransactionStatus.PENDING)
        kwargs.setdefault('created_at', utcnow())
        super().__init__(**kwargs)

    def __repr__(self):
        return f'<CarbonCreditTransaction {self.type} {self.amount} {self.status}>'

    def _finish(self, new_status):
        if self.status != TransactionStatus.PENDING:
            raise InvalidTransition(f"Transaction must be pending to become {new_status.value}")
        self.status = new_status
        self.updated_at = utcnow()

    def complete(self):
        self._finish(TransactionStatus.COMPLETED)

    def fail(self):
        self._finish(TransactionStatus.FAILED)

    def cancel(self):
        self._finish(TransactionStatus.CANCELLED)

    def to_dict(self):
        return {
            "id": self.id,
            "userId": self.user_id,
            "type": self.type.value,
            "amount": self.amount,
            "description": self.description,
            "sourceType": self.source_type,
            "sourceId": self.source_id,
            "status": self.status.value,
            "createdAt": isoformat_utc(self.created_at),
        }
