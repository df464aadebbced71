from prometheus_client import Counter

REGISTRATIONS = Counter(
    "ticketing_registrations_total",
    "Registration attempts by resulting status",
    ["status"],
)
PROMOTIONS = Counter(
    "ticketing_waitlist_promotions_total",
    "Waitlist promotion attempts by outcome",
    ["outcome"],
)
CHECKINS = Counter(
    "ticketing_checkins_total",
    "Check-in scans by outcome",
    ["outcome"],
)
PAYMENTS = Counter(
    "ticketing_payments_total",
    "Payment confirmations by outcome",
    ["outcome"],
)
ALLOCATIONS = Counter(
    "ticketing_allocations_total",
    "Resource allocation attempts by outcome",
    ["outcome"],
)
