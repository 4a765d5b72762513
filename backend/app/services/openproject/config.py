"""OpenProject module: constants, defaults and message templates.

Pure constants, no imports from the rest of the app.
"""

API_VERSION = "v3"

# Redis PubSub channel for sync pass events (bridged to WS /ws/sync)
REDIS_CHANNEL_SYNC = "sync:events"

# Canonical defaults applied when a work package omits a field
DEFAULT_TITLE = "No title"
DEFAULT_PROJECT = "Unknown project"
DEFAULT_STATUS = "unknown"
DEFAULT_ASSIGNEE = "Unassigned"
DEFAULT_PRIORITY = "Normal"

# _links key -> (related_to type, fallback title)
LINK_PARENT = ("parent", "parent", "Parent task")
LINK_COLLECTIONS = (
    ("children", "child", "Child task"),
    ("relatedTo", "related", "Related task"),
    ("blocks", "blocks", "Blocked task"),
    ("blockedBy", "blocked_by", "Blocking task"),
)

# Tracked fields for change notifications: (field, label, fallback)
TRACKED_FIELDS = (
    ("status", "Status", "N/A"),
    ("assignee", "Assignee", "Unassigned"),
    ("responsible", "Responsible", "N/A"),
    ("priority", "Priority", "Normal"),
)

# Telegram message templates (Markdown parse mode)
MSG_TITLE_MAX = 50
MSG_NEW_TASK = (
    "✅ *New Task Added*\n\n*{title}*\n\n"
    "Status: {status}\nAssignee: {assignee}\n\n_ID: {task_id}_"
)
MSG_TASK_CHANGED = "📝 *Task Updated*\n\n*{title}*\n\n{changes}\n\n_ID: {task_id}_"

SYNC_ALREADY_RUNNING = "Sync already running"
