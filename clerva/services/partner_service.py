"""
學伴搜尋
條件過濾 -> 相容度評分 -> 排序 -> 分頁
"""
import logging
from math import ceil
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple
from sqlalchemy import or_, select
from sqlalchemy.orm import Session, joinedload
from clerva.models import Match, MatchStatus, Profile, User, as_utc, iso
from clerva.utils.errors import APIError

logger = logging.getLogger(__name__)

LIST_FIELDS = ("subjects", "interests", "availability")
TEXT_FIELDS = (
    "searchQuery", "skillLevel", "studyStyle",
    "subjectCustomDescription", "skillLevelCustomDescription", "studyStyleCustomDescription",
    "interestsCustomDescription", "availabilityCustomDescription",
    "aboutYourselfSearch", "school", "languages",
)
# 自由文字條件（skillLevel / studyStyle 為精確比對，不算在內）
FREE_TEXT_FIELDS = tuple(f for f in TEXT_FIELDS if f not in ("skillLevel", "studyStyle"))
DEFAULT_LIMIT = 20
MAX_LIMIT = 50
MAX_SCORE = 100


class SearchCriteria:
    """已驗證的搜尋條件"""

    def __init__(self, data: Dict[str, Any]):
        self.subjects: List[str] = [s for s in data.get("subjects") or [] if s]
        self.interests: List[str] = [s for s in data.get("interests") or [] if s]
        self.availability: List[str] = [s for s in data.get("availability") or [] if s]
        self.skill_level: str = (data.get("skillLevel") or "").strip()
        self.study_style: str = (data.get("studyStyle") or "").strip()
        self.terms: List[str] = [
            data[f].strip().lower() for f in FREE_TEXT_FIELDS
            if isinstance(data.get(f), str) and data[f].strip()
        ]
        self.page: int = max(1, data.get("page") or 1)
        self.limit: int = min(max(1, data.get("limit") or DEFAULT_LIMIT), MAX_LIMIT)

    def is_empty(self) -> bool:
        return not (
            self.subjects or self.interests or self.availability
            or self.skill_level or self.study_style or self.terms
        )


def validate_search(data: Any) -> SearchCriteria:
    """型別檢查，錯誤時 400 並附上每個欄位的說明"""
    if not isinstance(data, dict):
        raise APIError("Invalid data", details={"body": "Expected a JSON object"})
    errors: Dict[str, str] = {}
    for f in LIST_FIELDS:
        v = data.get(f)
        if v is not None and (not isinstance(v, list) or not all(isinstance(i, str) for i in v)):
            errors[f] = "Expected an array of strings"
    for f in TEXT_FIELDS:
        v = data.get(f)
        if v is not None and not isinstance(v, str):
            errors[f] = "Expected a string"
    for f in ("page", "limit"):
        v = data.get(f)
        if v is not None and (isinstance(v, bool) or not isinstance(v, int)):
            errors[f] = "Expected an integer"
    if errors:
        raise APIError("Invalid data", details=errors)
    criteria = SearchCriteria(data)
    if criteria.is_empty():
        raise APIError("At least one search filter or criteria must be provided")
    return criteria


def score_profile(mine: Optional[Profile], other: Profile) -> Tuple[int, List[str]]:
    """
    相容度：共同科目 +20、共同興趣 +15、同程度 +10、同學習風格 +10，上限 100

    Returns:
        (分數, 說明文字)
    """
    if mine is None:
        return 0, []
    score = 0
    reasons: List[str] = []
    my_subjects = set(mine.subjects or [])
    my_interests = set(mine.interests or [])

    shared = sum(1 for s in other.subjects or [] if s in my_subjects)
    if shared:
        score += shared * 20
        reasons.append(f"{shared} shared subject(s)")
    shared = sum(1 for i in other.interests or [] if i in my_interests)
    if shared:
        score += shared * 15
        reasons.append(f"{shared} shared interest(s)")
    if mine.skill_level and other.skill_level == mine.skill_level:
        score += 10
        reasons.append("Same skill level")
    if mine.study_style and other.study_style == mine.study_style:
        score += 10
        reasons.append("Same study style")
    return min(score, MAX_SCORE), reasons


def _overlaps(values: Iterable[str], wanted: List[str]) -> bool:
    wanted_set = set(wanted)
    return any(v in wanted_set for v in values or [])


def _haystack(p: Profile) -> str:
    parts: List[str] = [
        p.user.name if p.user else "",
        p.bio or "", p.school or "", p.languages or "", p.about_yourself or "",
        p.subject_custom_description or "", p.skill_level_custom_description or "",
        p.study_style_custom_description or "", p.interests_custom_description or "",
        p.availability_custom_description or "",
    ]
    for lst in (p.subjects, p.interests, p.goals, p.available_days, p.available_hours):
        parts.extend(lst or [])
    return "\n".join(parts).lower()


class PartnerService:

    @classmethod
    def _match_sets(cls, session: Session, user_id: str) -> Tuple[Set[str], Set[str]]:
        """(已是學伴, 其他狀態的配對對象)"""
        accepted: Set[str] = set()
        excluded: Set[str] = set()
        for m in session.scalars(select(Match).where(or_(Match.sender_id == user_id, Match.receiver_id == user_id))):
            other = m.receiver_id if m.sender_id == user_id else m.sender_id
            if m.status == MatchStatus.ACCEPTED.value:
                accepted.add(other)
            else:
                excluded.add(other)
        return accepted, excluded - accepted

    @classmethod
    def serialize(cls, p: Profile, score: int, reasons: List[str], is_partner: bool) -> Dict[str, Any]:
        u = p.user
        return {
            "userId": p.user_id,
            "subjects": p.subjects or [],
            "interests": p.interests or [],
            "goals": p.goals or [],
            "studyStyle": p.study_style,
            "skillLevel": p.skill_level,
            "availableDays": p.available_days or [],
            "availableHours": p.available_hours or [],
            "bio": p.bio,
            "school": p.school,
            "languages": p.languages,
            "aboutYourself": p.about_yourself,
            "subjectCustomDescription": p.subject_custom_description,
            "skillLevelCustomDescription": p.skill_level_custom_description,
            "studyStyleCustomDescription": p.study_style_custom_description,
            "interestsCustomDescription": p.interests_custom_description,
            "availabilityCustomDescription": p.availability_custom_description,
            "updatedAt": iso(p.updated_at),
            "user": {
                "id": u.id, "name": u.name, "email": u.email, "avatarUrl": u.avatar_url,
                "role": u.role, "createdAt": iso(u.created_at),
            } if u else None,
            "matchScore": score,
            "matchReasons": reasons,
            "isAlreadyPartner": is_partner,
        }

    @classmethod
    def search(cls, session: Session, user_id: str, criteria: SearchCriteria) -> Dict[str, Any]:
        accepted, excluded = cls._match_sets(session, user_id)

        q = (
            select(Profile).join(User, User.id == Profile.user_id)
            .options(joinedload(Profile.user))
            .where(Profile.user_id != user_id, User.deactivated_at.is_(None))
        )
        if excluded:
            q = q.where(Profile.user_id.not_in(excluded))
        if criteria.skill_level:
            q = q.where(Profile.skill_level == criteria.skill_level)
        if criteria.study_style:
            q = q.where(Profile.study_style == criteria.study_style)
        candidates = session.scalars(q).unique().all()

        # JSON 陣列的交集與全文條件在 Python 端過濾
        matched: List[Profile] = []
        for p in candidates:
            if criteria.subjects and not _overlaps(p.subjects, criteria.subjects):
                continue
            if criteria.interests and not _overlaps(p.interests, criteria.interests):
                continue
            if criteria.availability and not _overlaps(p.available_days, criteria.availability):
                continue
            if criteria.terms:
                hay = _haystack(p)
                if not all(t in hay for t in criteria.terms):
                    continue
            matched.append(p)

        mine = session.scalar(select(Profile).where(Profile.user_id == user_id))
        scored = []
        for p in matched:
            score, reasons = score_profile(mine, p)
            scored.append((score, as_utc(p.updated_at).timestamp() if p.updated_at else 0.0, p, reasons))
        scored.sort(key=lambda t: (t[0], t[1]), reverse=True)

        total = len(scored)
        start = (criteria.page - 1) * criteria.limit
        page_items = scored[start:start + criteria.limit]
        logger.debug("partner search by %s: %s candidates, %s matched", user_id, len(candidates), total)
        return {
            "profiles": [cls.serialize(p, s, r, p.user_id in accepted) for s, _, p, r in page_items],
            "pagination": {
                "page": criteria.page,
                "limit": criteria.limit,
                "total": total,
                "totalPages": ceil(total / criteria.limit) if total else 0,
            },
        }
