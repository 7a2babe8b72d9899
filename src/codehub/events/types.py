"""Event type constants.

Centralizing event types as constants prevents typos and makes it easy
to discover every kind of account change that gets recorded.
"""

# ─── Users ──────────────────────────────────────────────

USER_CREATED = "user.created"
USER_UPDATED = "user.updated"
USER_RENAMED = "user.renamed"
USER_DELETED = "user.deleted"
USER_PASSWORD_CHANGED = "user.password_changed"

# ─── Groups ─────────────────────────────────────────────

GROUP_CREATED = "group.created"
MEMBERSHIP_ADDED = "membership.added"
MEMBERSHIP_REMOVED = "membership.removed"

# ─── Saved queries ──────────────────────────────────────

QUERY_SETTING_SAVED = "query_setting.saved"
QUERY_WATCH_CHANGED = "query_watch.changed"
