"""Default settings shared by the engine, the session and the CLI."""

# Reserved distance meaning "no measurable overlap"
MAX_HAUSDORFF_DISTANCE = 9999.0

# Translation search
INITIAL_TRANSLATION_STEP = 4

# Pose sweep; the defaults reduce to a pure translation search
MIN_ROTATION = 0.0
MAX_ROTATION = 0.0
ROTATION_STEP = 1.0
MIN_SCALE = 1.0
MAX_SCALE = 1.0
SCALE_STEP = 1.0

# Edge detection
CANNY_LOW_THRESHOLD = 30
CANNY_HIGH_THRESHOLD = 90
SMOOTH_BEFORE_CANNY = True

# "l1" (city block) or "l2" (precise euclidean)
DISTANCE_METRIC = "l1"
DISTANCE_METRICS = ("l1", "l2")

# Grey levels of the edge polarity image
EDGE_VALUE = 0
BACKGROUND_VALUE = 255

# QC output
QC_OUT_DIR = "hausfinder-qc"
QC_DPI = 144
