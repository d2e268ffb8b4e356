from typing import Dict

# Usage quotas for identities without unlimited access
GUEST_DAILY_LIMIT = 3  # Per UTC calendar day, tracked by IP hash and anon cookie
FREE_WEEKLY_LIMIT = 10  # Per ISO week, tracked by user id

ANON_USAGE_COOKIE_NAME = "aio_anon"
ANON_COOKIE_MAX_AGE_SECONDS = 60 * 60 * 24 * 365

PLANS = ("free", "day_pass", "pro_monthly", "pro_yearly")
PAID_PLANS = ("day_pass", "pro_monthly", "pro_yearly")
SUBSCRIPTION_PLANS = ("pro_monthly", "pro_yearly")
PLAN_STATUSES = ("active", "past_due", "canceled", "expired")

DAY_PASS_HOURS = 24

# Stripe checkout mode per purchasable plan
CHECKOUT_MODES: Dict[str, str] = {
    "day_pass": "payment",
    "pro_monthly": "subscription",
    "pro_yearly": "subscription",
}
