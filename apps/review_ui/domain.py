from dataclasses import dataclass
from typing import Optional

@dataclass
class ReviewJob:
    id: str
    batch_id: str
    status: str          # "pending" or "completed"
    image_url: str       # file:// URI or blob URL
    image_size: str
    created_at: str
    version: int
    ai_smoothness: int
    ai_shininess: int
    ai_combined: int
    ai_confidence: float
    technician: str
    station: str
    tech_smoothness: Optional[float] = None
    tech_shininess: Optional[float] = None
    tech_combined: Optional[float] = None

@dataclass
class ReviewResult:
    job_id: str
    batch_id: str
    reviewer: str
    smoothness: float
    shininess: float
    version: Optional[int] = None
