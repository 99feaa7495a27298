"""
AI 記憶監控（後台唯讀 + 停用單筆記憶）
"""
import logging
from typing import Any, Dict, List, Optional
from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session
from clerva.models import AIMemoryEntry, AIUserMemory, User, iso
from clerva.utils.errors import NotFound

logger = logging.getLogger(__name__)

TOP_USERS = 20
RECENT_MEMORIES = 20


class AIMemoryService:

    @staticmethod
    def serialize_entry(e: AIMemoryEntry, with_user: bool = False) -> Dict[str, Any]:
        data = {
            "id": e.id,
            "userId": e.user_id,
            "category": e.category,
            "importance": e.importance,
            "content": e.content,
            "context": e.context,
            "sessionId": e.session_id,
            "isActive": e.is_active,
            "expiresAt": iso(e.expires_at),
            "createdAt": iso(e.created_at),
            "updatedAt": iso(e.updated_at),
        }
        if with_user:
            data["user"] = e.user.summary() if e.user else None
        return data

    @staticmethod
    def serialize_memory(m: AIUserMemory) -> Dict[str, Any]:
        return {
            "id": m.id,
            "userId": m.user_id,
            "preferredName": m.preferred_name,
            "currentSubjects": m.current_subjects or [],
            "strugglingTopics": m.struggling_topics or [],
            "totalSessions": m.total_sessions,
            "totalStudyMinutes": m.total_study_minutes,
            "streakDays": m.streak_days,
            "longestStreak": m.longest_streak,
            "lastSessionDate": m.last_session_date.isoformat() if m.last_session_date else None,
            "createdAt": iso(m.created_at),
            "updatedAt": iso(m.updated_at),
        }

    @classmethod
    def overview(cls, session: Session, search: Optional[str] = None) -> Dict[str, Any]:
        total_users = session.scalar(select(func.count(AIUserMemory.id))) or 0
        total_entries = session.scalar(select(func.count(AIMemoryEntry.id))) or 0
        active_entries = session.scalar(
            select(func.count(AIMemoryEntry.id)).where(AIMemoryEntry.is_active.is_(True))
        ) or 0
        minutes, sessions = session.execute(
            select(func.coalesce(func.sum(AIUserMemory.total_study_minutes), 0),
                   func.coalesce(func.sum(AIUserMemory.total_sessions), 0))
        ).one()
        category_counts = dict(session.execute(
            select(AIMemoryEntry.category, func.count(AIMemoryEntry.id))
            .where(AIMemoryEntry.is_active.is_(True))
            .group_by(AIMemoryEntry.category)
        ).all())

        q = select(AIUserMemory, User).join(User, User.id == AIUserMemory.user_id)
        term = (search or "").strip()
        if term:
            like = f"%{term.lower()}%"
            q = q.where(or_(func.lower(User.name).like(like), func.lower(User.email).like(like)))
        rows = session.execute(
            q.order_by(AIUserMemory.total_sessions.desc(), AIUserMemory.updated_at.desc()).limit(TOP_USERS)
        ).all()
        top_users = [{**cls.serialize_memory(m), "user": u.summary()} for m, u in rows]

        recent = session.scalars(
            select(AIMemoryEntry).where(AIMemoryEntry.is_active.is_(True))
            .order_by(AIMemoryEntry.created_at.desc()).limit(RECENT_MEMORIES)
        ).all()

        return {
            "stats": {
                "totalMemoryUsers": total_users,
                "totalMemoryEntries": total_entries,
                "activeMemoryEntries": active_entries,
                "totalStudyMinutes": int(minutes),
                "avgSessionsPerUser": round(int(sessions) / total_users, 2) if total_users else 0,
                "categoryCounts": category_counts,
            },
            "topUsers": top_users,
            "recentMemories": [cls.serialize_entry(e, with_user=True) for e in recent],
        }

    @classmethod
    def user_detail(cls, session: Session, user_id: str) -> Dict[str, Any]:
        memory = session.scalar(select(AIUserMemory).where(AIUserMemory.user_id == user_id))
        if memory is None:
            raise NotFound("No AI memory found for this user")
        entries: List[AIMemoryEntry] = session.scalars(
            select(AIMemoryEntry).where(AIMemoryEntry.user_id == user_id, AIMemoryEntry.is_active.is_(True))
            .order_by(AIMemoryEntry.importance.desc(), AIMemoryEntry.created_at.desc())
        ).all()
        user = session.get(User, user_id)
        return {
            "user": user.summary() if user else None,
            "memory": cls.serialize_memory(memory),
            "entries": [cls.serialize_entry(e) for e in entries],
        }

    @classmethod
    def deactivate_entry(cls, session: Session, entry_id: str) -> AIMemoryEntry:
        entry = session.get(AIMemoryEntry, entry_id)
        if entry is None:
            raise NotFound("Memory entry not found")
        entry.is_active = False
        return entry
