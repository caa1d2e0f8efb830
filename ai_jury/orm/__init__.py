from .base import Base

from .competition import (
    CompetitionEvent, Category, Project, AnalysisReport, ReportKind, ReportStatus
)
from .jury_session import (
    JurySession, JuryLayerResult, JuryStatus, TOTAL_LAYERS, DONE_LAYER
)
