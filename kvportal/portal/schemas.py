"""
Portal Pydantic Schemas
"""

import uuid
from datetime import datetime

from pydantic import Field

from kvportal.core.schemas import CamelModel
from kvportal.groups.schemas import MeetingFields, PublicGroupResponse


class JoinGroupRequest(CamelModel):
    group_id: uuid.UUID


class PortalGroupResponse(PublicGroupResponse):
    is_member: bool = False
    is_responsible: bool = False
    member_count: int = 0


class MemberUser(CamelModel):
    id: uuid.UUID
    first_name: str | None = None
    last_name: str | None = None
    email: str


class MemberResponse(CamelModel):
    id: uuid.UUID
    user_id: uuid.UUID
    group_id: uuid.UUID
    joined_at: datetime
    user: MemberUser
    is_responsible_person: bool = False


class MemberListResponse(CamelModel):
    members: list[MemberResponse]
    total_items: int
    total_pages: int
    current_page: int
    page_size: int


class PortalGroupUpdate(MeetingFields):
    """Fields a responsible user may change."""

    description: str | None = Field(None, min_length=50, max_length=5000)
