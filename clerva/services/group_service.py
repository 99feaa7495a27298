"""
讀書小組服務
建立、加入/離開、管理與邀請
"""
import logging
from math import ceil
from typing import Any, Dict, List, Optional, Tuple
from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session
from clerva.models import (
    Group, GroupInvite, GroupMember, GroupPrivacy, GroupRole, InviteStatus,
    Notification, SkillLevel, User, iso, utcnow,
)
from clerva.utils.config_handler import get_setting
from clerva.utils.errors import APIError, Forbidden, NotFound
from clerva.utils.validation import clean_input, require_choice, require_id, strict_int

logger = logging.getLogger(__name__)

NAME_MAX = 100
PRIVACY_VALUES = {p.value for p in GroupPrivacy}
SKILL_LEVELS = {s.value for s in SkillLevel}
MANAGER_ROLES = (GroupRole.OWNER.value, GroupRole.ADMIN.value)


def _member_bounds() -> Tuple[int, int]:
    return int(get_setting("group_min_members") or 2), int(get_setting("group_max_members") or 50)


def validate_max_members(value: Any) -> int:
    """最多成員數需為整數，且在設定範圍內（預設 2..50）"""
    lo, hi = _member_bounds()
    n = strict_int(value)
    if n is None or not lo <= n <= hi:
        raise APIError(f"Max members must be an integer between {lo} and {hi}")
    return n


class GroupService:

    # ---- 共用 ----

    @classmethod
    def _get_group(cls, session: Session, group_id: Any) -> Group:
        group = session.get(Group, require_id(group_id, "Group ID is required"))
        if group is None or group.is_deleted:
            raise NotFound("Group not found")
        return group

    @classmethod
    def _membership(cls, session: Session, group_id: str, user_id: str) -> Optional[GroupMember]:
        return session.scalar(select(GroupMember).where(
            GroupMember.group_id == group_id, GroupMember.user_id == user_id
        ))

    @classmethod
    def member_count(cls, session: Session, group_id: str) -> int:
        return int(session.scalar(
            select(func.count(GroupMember.id)).where(GroupMember.group_id == group_id)
        ) or 0)

    @classmethod
    def _pending_invite(cls, session: Session, group_id: str, user_id: str) -> Optional[GroupInvite]:
        return session.scalar(select(GroupInvite).where(
            GroupInvite.group_id == group_id,
            GroupInvite.invitee_id == user_id,
            GroupInvite.status == InviteStatus.PENDING.value,
        ))

    @staticmethod
    def serialize_member(m: GroupMember) -> Dict[str, Any]:
        u = m.user
        return {
            "id": m.user_id,
            "name": u.name if u else None,
            "avatarUrl": u.avatar_url if u else None,
            "role": m.role,
            # 線上狀態由即時服務提供，API 只回預設值
            "onlineStatus": "OFFLINE",
            "joinedAt": iso(m.joined_at),
        }

    @classmethod
    def serialize(cls, g: Group, member_count: int, role: Optional[str] = None) -> Dict[str, Any]:
        return {
            "id": g.id,
            "name": g.name,
            "description": g.description,
            "subject": g.subject,
            "subjectCustomDescription": g.subject_custom_description,
            "skillLevel": g.skill_level,
            "skillLevelCustomDescription": g.skill_level_custom_description,
            "privacy": g.privacy,
            "maxMembers": g.max_members,
            "memberCount": member_count,
            "avatarUrl": g.avatar_url,
            "ownerId": g.owner_id,
            "userRole": role,
            "createdAt": iso(g.created_at),
            "updatedAt": iso(g.updated_at),
        }

    # ---- 建立 / 查詢 ----

    @classmethod
    def create_group(cls, session: Session, owner_id: str, data: Dict[str, Any]) -> Tuple[Group, Dict[str, List[str]]]:
        """
        建立小組，建立者成為 OWNER

        Args:
            session: 資料庫會話
            owner_id: 建立者
            data: name, subject, description, maxMembers, privacy, skillLevel,
                自訂描述, inviteUserIds

        Returns:
            (group, 邀請結果)
        """
        name = data.get("name")
        subject = data.get("subject")
        if not isinstance(name, str) or not name.strip() or not isinstance(subject, str) or not subject.strip():
            raise APIError("Name and subject are required")
        if len(name.strip()) > NAME_MAX:
            raise APIError(f"Name must be at most {NAME_MAX} characters")

        raw_max = data.get("maxMembers")
        max_members = validate_max_members(raw_max) if raw_max is not None else int(get_setting("group_default_members") or 10)
        privacy = require_choice(data.get("privacy") or GroupPrivacy.PUBLIC.value, PRIVACY_VALUES, "Invalid privacy setting")
        skill_level = data.get("skillLevel") or None
        if skill_level is not None:
            require_choice(skill_level, SKILL_LEVELS, "Invalid skill level")

        group = Group(
            name=name.strip(),
            subject=subject.strip(),
            description=clean_input(data.get("description"), 2000) or None,
            subject_custom_description=clean_input(data.get("subjectCustomDescription"), 500) or None,
            skill_level=skill_level,
            skill_level_custom_description=clean_input(data.get("skillLevelCustomDescription"), 500) or None,
            privacy=privacy,
            max_members=max_members,
            avatar_url=data.get("avatarUrl") if isinstance(data.get("avatarUrl"), str) else None,
            owner_id=owner_id,
        )
        session.add(group)
        session.flush()
        session.add(GroupMember(group_id=group.id, user_id=owner_id, role=GroupRole.OWNER.value))
        session.flush()

        result = {"invited": [], "skipped": []}
        invitees = data.get("inviteUserIds")
        if isinstance(invitees, list) and invitees:
            result = cls._create_invites(session, group, owner_id, invitees)
        logger.info("group %s created by %s", group.id, owner_id)
        return group, result

    @classmethod
    def list_mine(cls, session: Session, user_id: str) -> List[Dict[str, Any]]:
        rows = session.execute(
            select(Group, GroupMember.role)
            .join(GroupMember, GroupMember.group_id == Group.id)
            .where(GroupMember.user_id == user_id, Group.is_deleted.is_(False))
            .order_by(Group.updated_at.desc())
        ).all()
        counts = cls._counts(session, [g.id for g, _ in rows])
        return [cls.serialize(g, counts.get(g.id, 0), role) for g, role in rows]

    @classmethod
    def _counts(cls, session: Session, group_ids: List[str]) -> Dict[str, int]:
        if not group_ids:
            return {}
        return dict(session.execute(
            select(GroupMember.group_id, func.count(GroupMember.id))
            .where(GroupMember.group_id.in_(group_ids))
            .group_by(GroupMember.group_id)
        ).all())

    @classmethod
    def discover(
        cls, session: Session, user_id: str, q: Optional[str], subject: Optional[str], page: int, limit: int,
    ) -> Dict[str, Any]:
        """尚未加入的公開小組"""
        mine = select(GroupMember.group_id).where(GroupMember.user_id == user_id)
        conds = [
            Group.is_deleted.is_(False),
            Group.privacy == GroupPrivacy.PUBLIC.value,
            Group.id.not_in(mine),
        ]
        term = (q or "").strip().lower()
        if term:
            like = f"%{term}%"
            conds.append(or_(
                func.lower(Group.name).like(like),
                func.lower(func.coalesce(Group.description, "")).like(like),
                func.lower(Group.subject).like(like),
            ))
        if subject and subject.strip():
            conds.append(func.lower(Group.subject).like(f"%{subject.strip().lower()}%"))

        total = int(session.scalar(select(func.count(Group.id)).where(*conds)) or 0)
        groups = session.scalars(
            select(Group).where(*conds).order_by(Group.created_at.desc())
            .offset((page - 1) * limit).limit(limit)
        ).all()
        counts = cls._counts(session, [g.id for g in groups])
        return {
            "groups": [cls.serialize(g, counts.get(g.id, 0)) for g in groups],
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "totalPages": ceil(total / limit) if total else 0,
            },
        }

    @classmethod
    def detail(cls, session: Session, group_id: str, user_id: str) -> Dict[str, Any]:
        group = cls._get_group(session, group_id)
        membership = cls._membership(session, group.id, user_id)
        if membership is None and group.privacy != GroupPrivacy.PUBLIC.value:
            # 非公開小組對外不可見，持有邀請者除外
            if cls._pending_invite(session, group.id, user_id) is None:
                raise NotFound("Group not found")

        members = session.scalars(
            select(GroupMember).where(GroupMember.group_id == group.id).order_by(GroupMember.joined_at)
        ).all()
        owner = group.owner
        data = cls.serialize(group, len(members), membership.role if membership else None)
        data.update({
            "owner": {"id": owner.id, "name": owner.name, "avatarUrl": owner.avatar_url} if owner else None,
            "members": [cls.serialize_member(m) for m in members],
            "isMember": membership is not None,
            "isOwner": group.owner_id == user_id,
        })
        return data

    # ---- 加入 / 離開 ----

    @classmethod
    def join(cls, session: Session, group_id: Optional[str], user_id: str) -> GroupMember:
        group = cls._get_group(session, group_id)
        if cls._membership(session, group.id, user_id) is not None:
            raise APIError("You are already a member of this group")
        invite = cls._pending_invite(session, group.id, user_id)
        if group.privacy != GroupPrivacy.PUBLIC.value and invite is None:
            raise Forbidden("This group requires an invitation")
        if cls.member_count(session, group.id) >= group.max_members:
            raise APIError("Group is full")

        member = GroupMember(group_id=group.id, user_id=user_id, role=GroupRole.MEMBER.value)
        session.add(member)
        if invite is not None:
            invite.status = InviteStatus.ACCEPTED.value
            invite.responded_at = utcnow()
        session.flush()
        return member

    @classmethod
    def leave(cls, session: Session, group_id: Optional[str], user_id: str) -> None:
        group = cls._get_group(session, group_id)
        membership = cls._membership(session, group.id, user_id)
        if membership is None:
            raise APIError("You are not a member of this group")
        if membership.role == GroupRole.OWNER.value or group.owner_id == user_id:
            raise APIError("Group owner cannot leave the group. Transfer ownership or delete the group.")
        session.delete(membership)

    # ---- 管理 ----

    @classmethod
    def _require_manager(cls, session: Session, group: Group, user_id: str) -> GroupMember:
        membership = cls._membership(session, group.id, user_id)
        if membership is None or membership.role not in MANAGER_ROLES:
            raise Forbidden("Only the group owner or admins can do this")
        return membership

    @classmethod
    def update_group(cls, session: Session, group_id: str, user_id: str, data: Dict[str, Any]) -> Group:
        group = cls._get_group(session, group_id)
        cls._require_manager(session, group, user_id)

        if "name" in data:
            name = data.get("name")
            if not isinstance(name, str) or not name.strip():
                raise APIError("Name cannot be empty")
            if len(name.strip()) > NAME_MAX:
                raise APIError(f"Name must be at most {NAME_MAX} characters")
            group.name = name.strip()
        if "subject" in data:
            subject = data.get("subject")
            if not isinstance(subject, str) or not subject.strip():
                raise APIError("Subject cannot be empty")
            group.subject = subject.strip()
        if "description" in data:
            group.description = clean_input(data.get("description"), 2000) or None
        if "subjectCustomDescription" in data:
            group.subject_custom_description = clean_input(data.get("subjectCustomDescription"), 500) or None
        if "skillLevelCustomDescription" in data:
            group.skill_level_custom_description = clean_input(data.get("skillLevelCustomDescription"), 500) or None
        if "skillLevel" in data:
            level = data.get("skillLevel") or None
            if level is not None:
                require_choice(level, SKILL_LEVELS, "Invalid skill level")
            group.skill_level = level
        if "privacy" in data:
            group.privacy = require_choice(data.get("privacy"), PRIVACY_VALUES, "Invalid privacy setting")
        if "avatarUrl" in data:
            group.avatar_url = data.get("avatarUrl") if isinstance(data.get("avatarUrl"), str) else None
        if "maxMembers" in data:
            max_members = validate_max_members(data.get("maxMembers"))
            current = cls.member_count(session, group.id)
            if max_members < current:
                raise APIError(f"Max members cannot be less than the current member count ({current})")
            group.max_members = max_members
        group.updated_at = utcnow()
        session.flush()
        return group

    @classmethod
    def delete_group(cls, session: Session, group_id: str, user_id: str) -> None:
        """軟刪除並取消所有待處理邀請（僅限擁有者）"""
        group = cls._get_group(session, group_id)
        if group.owner_id != user_id:
            raise Forbidden("Only the group owner can delete the group")
        group.is_deleted = True
        group.updated_at = utcnow()
        now = utcnow()
        for inv in session.scalars(select(GroupInvite).where(
            GroupInvite.group_id == group.id, GroupInvite.status == InviteStatus.PENDING.value
        )):
            inv.status = InviteStatus.CANCELLED.value
            inv.responded_at = now
        logger.info("group %s deleted by owner %s", group.id, user_id)

    @classmethod
    def list_members(cls, session: Session, group_id: str, user_id: str) -> List[Dict[str, Any]]:
        group = cls._get_group(session, group_id)
        if cls._membership(session, group.id, user_id) is None:
            raise Forbidden("Only members can view the member list")
        members = session.scalars(
            select(GroupMember).where(GroupMember.group_id == group.id).order_by(GroupMember.joined_at)
        ).all()
        return [cls.serialize_member(m) for m in members]

    @classmethod
    def remove_member(cls, session: Session, group_id: str, actor_id: str, target_id: str) -> None:
        group = cls._get_group(session, group_id)
        actor = cls._require_manager(session, group, actor_id)
        target = cls._membership(session, group.id, target_id)
        if target is None:
            raise NotFound("Member not found")
        if target.role == GroupRole.OWNER.value or target_id == group.owner_id:
            raise APIError("The group owner cannot be removed")
        if actor.role == GroupRole.ADMIN.value and target.role == GroupRole.ADMIN.value:
            raise Forbidden("Admins cannot remove other admins")
        session.delete(target)

    @classmethod
    def change_role(cls, session: Session, group_id: str, actor_id: str, target_id: str, role: Any) -> GroupMember:
        group = cls._get_group(session, group_id)
        if group.owner_id != actor_id:
            raise Forbidden("Only the group owner can change member roles")
        require_choice(role, (GroupRole.ADMIN.value, GroupRole.MEMBER.value), "Role must be ADMIN or MEMBER")
        target = cls._membership(session, group.id, target_id)
        if target is None:
            raise NotFound("Member not found")
        if target.role == GroupRole.OWNER.value:
            raise APIError("Cannot change the owner's role")
        target.role = role
        return target

    # ---- 邀請 ----

    @classmethod
    def _create_invites(cls, session: Session, group: Group, inviter_id: str, user_ids: List[Any]) -> Dict[str, List[str]]:
        invited: List[str] = []
        skipped: List[str] = []
        inviter = session.get(User, inviter_id)
        inviter_name = inviter.name if inviter and inviter.name else "Someone"
        for raw in dict.fromkeys(str(u) for u in user_ids if u):
            user = session.get(User, raw)
            if (
                user is None
                or raw == inviter_id
                or cls._membership(session, group.id, raw) is not None
                or cls._pending_invite(session, group.id, raw) is not None
            ):
                skipped.append(raw)
                continue
            session.add(GroupInvite(group_id=group.id, inviter_id=inviter_id, invitee_id=raw))
            session.add(Notification(
                user_id=raw,
                type="GROUP_INVITE",
                title="Group invitation",
                message=f"{inviter_name} invited you to join {group.name}",
                action_url=f"/groups/{group.id}",
            ))
            invited.append(raw)
        session.flush()
        return {"invited": invited, "skipped": skipped}

    @classmethod
    def invite(cls, session: Session, group_id: str, inviter_id: str, user_ids: Any) -> Dict[str, List[str]]:
        """公開小組任何成員可邀請，其他小組需 OWNER/ADMIN"""
        if not isinstance(user_ids, list) or not user_ids:
            raise APIError("userIds must be a non-empty array")
        group = cls._get_group(session, group_id)
        membership = cls._membership(session, group.id, inviter_id)
        if membership is None:
            raise Forbidden("Only members can invite to this group")
        if group.privacy != GroupPrivacy.PUBLIC.value and membership.role not in MANAGER_ROLES:
            raise Forbidden("Only the group owner or admins can invite to this group")
        return cls._create_invites(session, group, inviter_id, user_ids)

    @classmethod
    def pending_invites(cls, session: Session, user_id: str) -> List[Dict[str, Any]]:
        rows = session.scalars(
            select(GroupInvite).join(Group, Group.id == GroupInvite.group_id).where(
                GroupInvite.invitee_id == user_id,
                GroupInvite.status == InviteStatus.PENDING.value,
                Group.is_deleted.is_(False),
            ).order_by(GroupInvite.created_at.desc())
        ).all()
        return [{
            "id": inv.id,
            "groupId": inv.group_id,
            "status": inv.status,
            "createdAt": iso(inv.created_at),
            "group": {
                "id": inv.group.id, "name": inv.group.name, "subject": inv.group.subject,
                "privacy": inv.group.privacy, "avatarUrl": inv.group.avatar_url,
            },
            "inviter": inv.inviter.summary() if inv.inviter else None,
        } for inv in rows]

    @classmethod
    def respond_invite(cls, session: Session, invite_id: str, user_id: str, action: Any) -> GroupInvite:
        require_choice(action, ("accept", "decline"), "Action must be accept or decline")
        invite = session.get(GroupInvite, invite_id)
        if invite is None or invite.invitee_id != user_id:
            raise NotFound("Invite not found")
        if invite.status != InviteStatus.PENDING.value:
            raise APIError("Invite is no longer pending")
        if action == "accept":
            # join 會把邀請標成 ACCEPTED
            cls.join(session, invite.group_id, user_id)
        else:
            invite.status = InviteStatus.DECLINED.value
            invite.responded_at = utcnow()
        return invite
