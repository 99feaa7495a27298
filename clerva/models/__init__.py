from .base import (
    new_id, utcnow, as_utc, iso,
    UserRole, SkillLevel, StudyStyle, MatchStatus,
    User, Profile, Match, Notification, Post, PostComment, Message,
)
from .announcement import Announcement, AnnouncementDismissal, AnnouncementPriority, AnnouncementStatus
from .moderation import (
    ReportType, ReportStatus, FeedbackStatus, FlagStatus, BanType,
    Report, Feedback, FlaggedContent, UserWarning, UserBan, AdminAuditLog,
    SuspiciousActivityLog, SuspiciousSeverity,
)
from .group import Group, GroupMember, GroupInvite, GroupPrivacy, GroupRole, InviteStatus
from .ai import AIUsageLog, AIUserMemory, AIMemoryEntry, MemoryCategory

__all__ = [
    "new_id", "utcnow", "as_utc", "iso",
    "UserRole", "SkillLevel", "StudyStyle", "MatchStatus",
    "User", "Profile", "Match", "Notification", "Post", "PostComment", "Message",
    "Announcement", "AnnouncementDismissal", "AnnouncementPriority", "AnnouncementStatus",
    "ReportType", "ReportStatus", "FeedbackStatus", "FlagStatus", "BanType",
    "Report", "Feedback", "FlaggedContent", "UserWarning", "UserBan", "AdminAuditLog",
    "SuspiciousActivityLog", "SuspiciousSeverity",
    "Group", "GroupMember", "GroupInvite", "GroupPrivacy", "GroupRole", "InviteStatus",
    "AIUsageLog", "AIUserMemory", "AIMemoryEntry", "MemoryCategory",
]
