from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, UTC
from enum import Enum
from typing import Dict, List, Optional, Protocol


class MemberType(Enum):
  AGENT = "agent"
  HUMAN = "human"


class MemberStatus(Enum):
  ACTIVE = "active"
  INACTIVE = "inactive"
  BANNED = "banned"


@dataclass
class Permissions:
  can_write: bool = True
  can_invite: bool = False
  can_moderate: bool = False

  @classmethod
  def for_role(cls, role: str) -> "Permissions":
    elevated = role in ("owner", "moderator")
    return cls(can_write=True, can_invite=elevated, can_moderate=elevated)


@dataclass
class SpaceMember:
  member_id: str
  member_type: MemberType
  role: str = "member"
  status: MemberStatus = MemberStatus.ACTIVE
  permissions: Permissions = field(default_factory=Permissions)
  joined_at: datetime = field(default_factory=lambda: datetime.now(UTC))
  last_active_at: Optional[datetime] = None

  @property
  def is_active(self) -> bool:
    return self.status == MemberStatus.ACTIVE


class Membership(Protocol):
  async def is_member(self, space_id: str, member_id: str) -> bool: ...

  async def has_write_permission(self, space_id: str, member_id: str) -> bool: ...

  async def get_member(self, space_id: str, member_id: str) -> Optional[SpaceMember]: ...

  async def get_members(self, space_id: str) -> List[SpaceMember]: ...

  async def mark_active(self, space_id: str, member_id: str) -> None: ...


class InMemoryMembership:
  def __init__(self):
    self.spaces: Dict[str, Dict[str, SpaceMember]] = defaultdict(dict)

  def add_member(
    self,
    space_id: str,
    member_id: str,
    member_type: MemberType | str,
    role: str = "member",
    status: MemberStatus = MemberStatus.ACTIVE,
    permissions: Optional[Permissions] = None,
  ) -> SpaceMember:
    member = SpaceMember(
      member_id=member_id,
      member_type=MemberType(member_type),
      role=role,
      status=status,
      permissions=permissions or Permissions.for_role(role),
    )
    self.spaces[space_id][member_id] = member
    return member

  async def get_member(self, space_id: str, member_id: str) -> Optional[SpaceMember]:
    return self.spaces.get(space_id, {}).get(member_id)

  async def is_member(self, space_id: str, member_id: str) -> bool:
    member = await self.get_member(space_id, member_id)
    return member is not None and member.is_active

  async def has_write_permission(self, space_id: str, member_id: str) -> bool:
    member = await self.get_member(space_id, member_id)
    return member is not None and member.is_active and member.permissions.can_write

  async def get_members(self, space_id: str) -> List[SpaceMember]:
    return [m for m in self.spaces.get(space_id, {}).values() if m.is_active]

  async def mark_active(self, space_id: str, member_id: str) -> None:
    member = await self.get_member(space_id, member_id)
    if member is not None:
      member.last_active_at = datetime.now(UTC)
