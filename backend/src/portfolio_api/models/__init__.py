from .analytics import VisitorDailySummary, VisitorLocation, VisitorMetrics
from .privacy import PRIVACY_CONFIG_ID, ConsentAuditLog, PrivacyConfigRecord, PrivacyConsent
from .project import PROJECT_STATUSES, Project, ProjectTag
from .visitor import PageView, VisitorEvent, VisitorRealtime, VisitorSession

__all__ = [
    "ConsentAuditLog",
    "PRIVACY_CONFIG_ID",
    "PROJECT_STATUSES",
    "PageView",
    "PrivacyConfigRecord",
    "PrivacyConsent",
    "Project",
    "ProjectTag",
    "VisitorDailySummary",
    "VisitorEvent",
    "VisitorLocation",
    "VisitorMetrics",
    "VisitorRealtime",
    "VisitorSession",
]
