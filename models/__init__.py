from models.base import Base
from models.job import Job
from models.event import Event
from models.analysis_summary import AnalysisSummary

__all__ = [
    "Base",
    "Job",
    "Event",
    "AnalysisSummary",
]
