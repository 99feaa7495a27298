"""
Module: clerva/routes/routes_groups.py
Unified comment style: module docstring + minimal inline notes.
"""
from __future__ import annotations
import logging
from flask import Blueprint, g, request
from clerva.services.group_service import GroupService
from clerva.utils.authz import login_required
from clerva.utils.db import get_session
from clerva.utils.response_helpers import json_body, ok_response, parse_pagination

logger = logging.getLogger(__name__)

bp = Blueprint("groups", __name__, url_prefix="/api/groups")


@bp.get("")
@login_required
def my_groups():
    with get_session() as s:
        groups = GroupService.list_mine(s, g.current_user.id)
    return ok_response(groups=groups)


@bp.get("/discover")
@login_required
def discover_groups():
    page, limit = parse_pagination(default_limit=20, max_limit=50)
    with get_session() as s:
        data = GroupService.discover(
            s, g.current_user.id,
            request.args.get("q"), request.args.get("subject"),
            page, limit,
        )
    return ok_response(**data)


@bp.post("/create")
@login_required
def create_group():
    user = g.current_user
    with get_session() as s:
        group, invites = GroupService.create_group(s, user.id, json_body())
        s.commit()
        payload = GroupService.serialize(group, 1, "OWNER")
    return ok_response(201, group=payload, invites=invites)


@bp.post("/join")
@login_required
def join_group():
    group_id = json_body().get("groupId")
    with get_session() as s:
        GroupService.join(s, group_id, g.current_user.id)
        s.commit()
    return ok_response(message="Joined group")


@bp.post("/leave")
@login_required
def leave_group():
    group_id = json_body().get("groupId")
    with get_session() as s:
        GroupService.leave(s, group_id, g.current_user.id)
        s.commit()
    return ok_response(message="Left group")


@bp.get("/invites")
@login_required
def my_invites():
    with get_session() as s:
        invites = GroupService.pending_invites(s, g.current_user.id)
    return ok_response(invites=invites)


@bp.post("/invites/<invite_id>/respond")
@login_required
def respond_invite(invite_id: str):
    action = json_body().get("action")
    with get_session() as s:
        invite = GroupService.respond_invite(s, invite_id, g.current_user.id, action)
        s.commit()
        status = invite.status
    return ok_response(status=status)


@bp.get("/<group_id>")
@login_required
def group_detail(group_id: str):
    with get_session() as s:
        group = GroupService.detail(s, group_id, g.current_user.id)
    return ok_response(group=group)


@bp.patch("/<group_id>")
@login_required
def update_group(group_id: str):
    user = g.current_user
    with get_session() as s:
        group = GroupService.update_group(s, group_id, user.id, json_body())
        s.commit()
        payload = GroupService.serialize(group, GroupService.member_count(s, group.id))
    return ok_response(group=payload)


@bp.delete("/<group_id>")
@login_required
def delete_group(group_id: str):
    with get_session() as s:
        GroupService.delete_group(s, group_id, g.current_user.id)
        s.commit()
    return ok_response(message="Group deleted")


@bp.get("/<group_id>/members")
@login_required
def group_members(group_id: str):
    with get_session() as s:
        members = GroupService.list_members(s, group_id, g.current_user.id)
    return ok_response(members=members)


@bp.post("/<group_id>/invite")
@login_required
def invite_to_group(group_id: str):
    user = g.current_user
    with get_session() as s:
        result = GroupService.invite(s, group_id, user.id, json_body().get("userIds"))
        s.commit()
    logger.info("group %s: %s invited %d users", group_id, user.id, len(result["invited"]))
    return ok_response(**result)


@bp.delete("/<group_id>/members/<user_id>")
@login_required
def remove_member(group_id: str, user_id: str):
    with get_session() as s:
        GroupService.remove_member(s, group_id, g.current_user.id, user_id)
        s.commit()
    return ok_response(message="Member removed")


@bp.patch("/<group_id>/members/<user_id>")
@login_required
def change_member_role(group_id: str, user_id: str):
    with get_session() as s:
        member = GroupService.change_role(s, group_id, g.current_user.id, user_id, json_body().get("role"))
        s.commit()
        role = member.role
    return ok_response(userId=user_id, role=role)
