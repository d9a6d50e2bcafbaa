"""Pipeline stages that produce the phase artifacts."""

from .scan import ProjectScanner
from .analyze import AnalysisResult, CodeAnalyzer
from .review import FindingsReviewer
from .reporting import ReportGenerator

__all__ = [
    "AnalysisResult",
    "CodeAnalyzer",
    "FindingsReviewer",
    "ProjectScanner",
    "ReportGenerator",
]
