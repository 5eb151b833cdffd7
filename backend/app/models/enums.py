"""
Group membership roles.
"""

import enum


class MemberRole(str, enum.Enum):
    """
    Role of a user inside one group.

    Roles:
        ADMIN: Can change group details, settings and member roles
        MEMBER: Regular participant (default role)
    """
    ADMIN = "admin"
    MEMBER = "member"
