from pydantic import BaseModel, Field
from typing import List, Literal, Optional

from mission_state import UserMissionStatus
from models import DifficultyLevel, MissionStatus, MissionType, TransactionType

# --- MISSION CATALOG ---
class MissionListQuery(BaseModel):
    type: Optional[MissionType] = None
    difficulty: Optional[DifficultyLevel] = None

class CreateMissionRequest(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    description: str = Field(min_length=1)
    type: MissionType
    difficulty: DifficultyLevel
    co2ReductionAmount: float = Field(ge=0)
    creditReward: int = Field(ge=0)
    requiredSubmissions: int = Field(default=1, ge=1)
    imageUrl: Optional[str] = None
    instructions: List[str] = []
    verificationCriteria: List[str] = []

class MissionStatusUpdate(BaseModel):
    status: MissionStatus

# --- USER MISSIONS ---
class AssignMissionRequest(BaseModel):
    missionId: str = Field(min_length=1)

class UserMissionsQuery(BaseModel):
    status: Optional[UserMissionStatus] = None

class SubmitMissionRequest(BaseModel):
    imageUrls: List[str] = Field(min_length=1)
    note: Optional[str] = Field(default=None, max_length=1000)

class VerifyMissionRequest(BaseModel):
    decision: Literal["approved", "rejected"]
    verificationNote: Optional[str] = Field(default=None, max_length=1000)

# --- CARBON CREDITS ---
class TransactionHistoryQuery(BaseModel):
    type: Optional[TransactionType] = None
    limit: int = Field(default=20, ge=1, le=100)
    offset: int = Field(default=0, ge=0)
