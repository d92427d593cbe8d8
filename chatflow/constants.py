"""Shared constants."""

TERMINAL = "__terminal__"
QUOTED_STEP = "__quoted__"

DEFAULT_CURRENCY = "USD"
DEFAULT_DOCUMENT_TTL_HOURS = 48
DEFAULT_TRANSFER_TTL_MINUTES = 30
DEFAULT_QUOTE_TTL_SECONDS = 120

# Redis keys outlive ``expires_at`` so the dispatcher can still see and cancel
# the draft behind an expired state.
STATE_EXPIRY_GRACE_SECONDS = 24 * 60 * 60

PLATFORM_FEE_RATE = "0.01"
