"""User-facing error messages and text for the backend."""

# Authentication messages
AUTH_TOKEN_INVALID = "Could not validate credentials"

# Chat messages
CHAT_MESSAGE_REQUIRED = "Message content is required"
CHAT_MESSAGE_SEND_FAILED = "Failed to send message"
CHAT_HISTORY_UNAVAILABLE = "Could not load messages"
CHAT_INVALID_FRAME = "Invalid JSON format"
CHAT_UNSUPPORTED_FRAME = "Unsupported frame type"
CHAT_NOT_CHANNEL_MEMBER = "You are not a member of this conversation"
CHAT_MEMBERSHIP_UNAVAILABLE = "Could not verify conversation membership"

# Notification messages
NOTIFICATION_NOT_FOUND = "Notification not found"
NOTIFICATION_ADMIN_REQUIRED = "Only admins can send notifications to other users"
NOTIFICATION_CREATE_FAILED = "Failed to create notification"
NOTIFICATION_UPDATE_FAILED = "Failed to update notification"

# Database messages
DB_CONNECTION_ERROR = "Database connection error. Please try again."
