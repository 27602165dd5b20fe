"""
Constants shared by the session lifecycle, notifications and reminder scheduler.
"""

# Collection size ceilings (keep the data files small)
MAX_USERS = 128
MAX_SESSIONS = 16
MAX_MESSAGES_PER_SESSION = 50

# Session field limits
MAX_DURATION_MINUTES = 300
MIN_CAPACITY = 1
MAX_CAPACITY = 12
MAX_MESSAGE_LENGTH = 500
MAX_PARTICIPANT_NAME_LENGTH = 20
PAST_TOLERANCE_MINUTES = 5  # clock skew allowed when creating/editing a session

ALLOWED_LEVELS = ("débutant", "débutant/moyen", "moyen", "confirmé")

# Reminder scheduler
REMINDER_MINUTES_BEFORE_START = 45
REMINDER_CHECK_INTERVAL_SECONDS = 60
REMINDER_INITIAL_DELAY_SECONDS = 2
