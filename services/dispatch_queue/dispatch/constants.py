"""Shared names for queue actions, message types, and delivery statuses.

Message types (texts.type):
- ``page``: radio page notification with a link to the audio.
- ``page-announcement``: admin announcement to subscribers of one talkgroup.
- ``account``: account lifecycle texts (welcome, login code).
- ``department-text``: peer message between members of a department.
- ``department-announcement``: admin announcement to a whole department.
- ``department-alert``: admin-only notices (new subscriber, delivery issues).
- ``alert``: system alerts sent from the global alert number.
- ``transcript``: transcript of a page once transcription completes.

Delivery statuses follow the provider's ``MessageStatus`` values. Only
``sent``, ``delivered`` and ``undelivered`` have outcome lists on the audit
record.
"""

DEFAULT_RETRY_DELAYS_MS = [1000, 2000, 4000, 8000]

# Queue actions
ACTION_ACTIVATE = "activate"
ACTION_INBOUND_TEXT = "inbound-text"
ACTION_INBOUND_STATUS = "inbound-status"
ACTION_ANNOUNCE = "announce"
ACTION_PAGE = "page"
ACTION_LOGIN = "login"
ACTION_AUTH_CODE = "auth-code"
ACTION_TRANSCRIPTION = "transcription-complete"
ACTION_PHONE_ISSUE = "phone-issue"
ACTION_ALERT = "alert"

# Message types
TYPE_PAGE = "page"
TYPE_PAGE_ANNOUNCEMENT = "page-announcement"
TYPE_ACCOUNT = "account"
TYPE_DEPARTMENT_TEXT = "department-text"
TYPE_DEPARTMENT_ANNOUNCEMENT = "department-announcement"
TYPE_DEPARTMENT_ALERT = "department-alert"
TYPE_ALERT = "alert"
TYPE_TRANSCRIPT = "transcript"

MESSAGE_TYPES = (
    TYPE_PAGE,
    TYPE_PAGE_ANNOUNCEMENT,
    TYPE_ACCOUNT,
    TYPE_DEPARTMENT_TEXT,
    TYPE_DEPARTMENT_ANNOUNCEMENT,
    TYPE_DEPARTMENT_ALERT,
    TYPE_ALERT,
    TYPE_TRANSCRIPT,
)

# Types that are always tied to a department
DEPARTMENT_TYPES = frozenset({TYPE_DEPARTMENT_TEXT, TYPE_DEPARTMENT_ANNOUNCEMENT, TYPE_DEPARTMENT_ALERT})

# Delivery statuses
STATUS_SENT = "sent"
STATUS_DELIVERED = "delivered"
STATUS_UNDELIVERED = "undelivered"
OUTCOME_STATUSES = (STATUS_SENT, STATUS_DELIVERED, STATUS_UNDELIVERED)

# Consecutive undelivered texts between escalation alerts
ESCALATION_EVERY = 10

# Worker outcome labels
RESULT_SUCCESS = "success"
RESULT_DROPPED = "dropped"
RESULT_RETRY = "retry"
RESULT_DEAD_LETTER = "dead_letter"

# Audit keys reserved per event; activation uses key, key+1 and key+2
KEYS_PER_EVENT = 3
