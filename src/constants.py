"""
Shared constants used across multiple modules.
Single source of truth for entry vocabularies and fixed model weights.
"""

# Scales shared by symptom severity, exercise intensity and activity stress
SCALE_MIN = 1
SCALE_MAX = 10

# Exercise duration bounds (minutes)
EXERCISE_MIN_MINUTES = 1
EXERCISE_MAX_MINUTES = 480

SLEEP_MIN_HOURS = 0.0
SLEEP_MAX_HOURS = 24.0

MEAL_CATEGORIES = {"breakfast", "lunch", "dinner", "snack"}

EXERCISE_TYPES = {
    "walking", "running", "cycling", "swimming", "yoga", "strength",
    "hiit", "stretching", "pilates", "sports",
}
ACTIVITY_TYPES = {
    "work", "commute", "social", "housework", "screen_time",
    "meditation", "travel", "errands", "rest",
}

# Exercise type recorded when the logged type is free text
OTHER_EXERCISE = "other"

# Derived factor thresholds
HIGH_INTENSITY_MIN = 7
POOR_SLEEP_BELOW_HOURS = 6.0
EXCESSIVE_SLEEP_ABOVE_HOURS = 10.0
HIGH_STRESS_MIN = 8

# Frequency smoothing: floor on the baseline frequency in the
# raw-correlation denominator. A heuristic, tune freely.
SMOOTHING_FLOOR = 0.1

# Confidence grading by combined occurrences
CONFIDENCE_HIGH_MIN = 10
CONFIDENCE_MEDIUM_MIN = 5
CONFIDENCE_LEVELS = ("low", "medium", "high")

# Predictive model weights (static, never learned)
RISK_WEIGHTS = {
    "sleep": 0.35,
    "exercise": 0.30,
    "food": 0.25,
    "stress": 0.10,
}
BASELINE_SUBSCORE = 10.0
ELEVATED_SUBSCORE = 50.0
COMPOUND_STEP = 0.1

# Sleep curve knots (hours -> sub-score), clamped at both ends
SLEEP_CURVE_HOURS = [4.0, 5.0, 6.0, 7.0]
SLEEP_CURVE_SCORES = [100.0, 75.0, 45.0, 10.0]

# Band upper bounds (inclusive)
GREEN_MAX = 30
YELLOW_MAX = 65
