from decimal import Decimal

# Defaults for a flat's first penalty settings
DEFAULT_CONTRIBUTION_PENALTY_PERCENTAGE = Decimal("3.00")
DEFAULT_WARNING_PERIOD_DAYS = 3

# Penalty type raised automatically for contribution deficits
MINIMUM_ENTRY = "MINIMUM_ENTRY"

# Description prefixes for scheduled and admin-triggered passes
AUTOMATIC_REASON = "Automatic"
MANUAL_REASON = "Manual"

# Penalty reminders per check cycle, and the minimum gap between two of them
REMINDER_MAX_NOTICES = 3
REMINDER_MIN_INTERVAL_HOURS = 12
