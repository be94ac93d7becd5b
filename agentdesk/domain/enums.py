from __future__ import annotations

from enum import Enum


class Tone(str, Enum):
    PROFESSIONAL = "professional"
    FRIENDLY = "friendly"
    TECHNICAL = "technical"
    CASUAL = "casual"


class Role(str, Enum):
    ADMIN = "admin"
    OWNER = "owner"
    SUPER_ADMIN = "super_admin"
    # Tenant-bound credential used by customer channels to post inbound messages.
    SERVICE = "service"


class MessageRole(str, Enum):
    CUSTOMER = "customer"
    AGENT = "agent"


class ResolutionReason(str, Enum):
    EXPLICIT = "explicit"
    IDLE_TIMEOUT = "idle_timeout"
    AUTO = "auto"
