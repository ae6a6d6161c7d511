"""
constants.py – Shared labels, category keys, and thresholds.
"""

# ── Activity categories (emission factor registry keys) ───────
CATEGORY_EQUIPMENT_FUEL = "equipment-fuel-liter"
CATEGORY_VEHICLE_FUEL = "vehicle-fuel-liter"
CATEGORY_GRID_ELECTRICITY = "grid-electricity-kwh"
CATEGORY_WATER_SUPPLY = "water-supply-m3"
CATEGORY_WASTE = "waste-kg"

# Non-emission quantities produced by the normalizer
CATEGORY_INCIDENTS = "safety-incidents"
CATEGORY_EXPOSURE_HOURS = "employee-hours"

# ── Reporting periods ─────────────────────────────────────────
PERIOD_DAILY = "daily"
PERIOD_MONTHLY = "monthly"
ALLOWED_PERIOD_TYPES = {PERIOD_DAILY, PERIOD_MONTHLY}

# ── Waste ─────────────────────────────────────────────────────
WASTE_UNIT_KG = "kg"
WASTE_UNIT_TON = "ton"
ALLOWED_WASTE_UNITS = {WASTE_UNIT_KG, WASTE_UNIT_TON}

TREATMENT_LANDFILL = "landfill"
TREATMENT_INCINERATION = "incineration"
TREATMENT_RECYCLING = "recycling"
TREATMENT_COMPOST = "compost"
WASTE_TREATMENT_METHODS = [
    TREATMENT_LANDFILL,
    TREATMENT_INCINERATION,
    TREATMENT_RECYCLING,
    TREATMENT_COMPOST,
]

WASTE_TYPE_OPTIONS = ["Plastic", "Food", "Paper", "Metal", "Glass", "Other"]

# Treatment percentages for one waste type may sum to 100 % plus float slack
ALLOCATION_LIMIT_PCT = 100.0001

# Where a waste factor came from
FACTOR_SOURCE_SPECIFIC = "specific"
FACTOR_SOURCE_GENERIC = "generic"
FACTOR_SOURCE_MISSING = "missing"

# ── Safety ────────────────────────────────────────────────────
# 200,000 h ≈ 100 full-time workers for one year
TRIR_STANDARD_HOURS = 200_000

# ── Unit conversions ──────────────────────────────────────────
KG_PER_TON = 1_000.0
KG_PER_TONNE = 1_000.0

# ── Target comparison labels ──────────────────────────────────
TARGET_BELOW = "below_target"
TARGET_ABOVE = "above_target"
TARGET_NO_BENCHMARK = "no_benchmark"
TARGET_NO_DATA = "no_data"
