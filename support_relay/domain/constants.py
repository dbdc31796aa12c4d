"""Domain constants and type aliases"""
from typing import Literal

# Type aliases for roles, wire events and help request states
Role = Literal["admin", "user"]
InboundType = Literal["join", "message", "typing", "markAsRead"]
OutboundType = Literal["adminJoined", "userJoined", "message", "newUser", "userLeft", "typing", "helpRequest", "error"]
HelpRequestStatus = Literal["pending", "in_progress", "resolved"]

# Role constants
ROLE_ADMIN: Role = "admin"
ROLE_USER: Role = "user"

# The admin is addressed by this username and joins this room
ADMIN_USERNAME = "admin"
ADMIN_ROOM = "admin"

# Inbound event type constants
EVENT_JOIN: InboundType = "join"
EVENT_MESSAGE: InboundType = "message"
EVENT_TYPING: InboundType = "typing"
EVENT_MARK_AS_READ: InboundType = "markAsRead"

# Outbound event type constants
OUT_ADMIN_JOINED: OutboundType = "adminJoined"
OUT_USER_JOINED: OutboundType = "userJoined"
OUT_MESSAGE: OutboundType = "message"
OUT_NEW_USER: OutboundType = "newUser"
OUT_USER_LEFT: OutboundType = "userLeft"
OUT_TYPING: OutboundType = "typing"
OUT_HELP_REQUEST: OutboundType = "helpRequest"
OUT_ERROR: OutboundType = "error"

# Help request status constants
HELP_PENDING: HelpRequestStatus = "pending"
HELP_IN_PROGRESS: HelpRequestStatus = "in_progress"
HELP_RESOLVED: HelpRequestStatus = "resolved"

# Error codes carried by outbound "error" envelopes
ERROR_PERSISTENCE_FAILURE = "persistence_failure"
ERROR_ROLE_CONFLICT = "role_conflict"
