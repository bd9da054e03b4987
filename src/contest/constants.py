CONTEST_PORT = 8080

# Peer review assignment
MAX_ASSIGNMENTS_PER_REVIEWER = 6

# Vote criteria bounds (inclusive)
MIN_VOTE_SCORE = 0
MAX_VOTE_SCORE = 5

# Bayesian smoothing pseudo-count pulling lightly voted entries to the global mean
SMOOTHING_PSEUDO_VOTES = 2.0

# Composite weights, must sum to 1.0
WEIGHT_PROBLEM_FIT = 0.25
WEIGHT_CLARITY = 0.20
WEIGHT_STYLE = 0.20
WEIGHT_ORIGINALITY = 0.15
WEIGHT_OVERALL = 0.20

# Stored score scales: 5/5 -> 1000 per criterion, 5/5 -> 10000 final.
# The final score keeps an extra digit to reduce ranking ties.
CRITERION_SCALE = 200
FINAL_SCALE = 2000

# Orchestrator scheduling (in seconds)
PHASE_TICK_INTERVAL = 60
PHASE_TICK_STARTUP_DELAY = 5

# Auth
JWT_ALGORITHM = "HS256"
DEFAULT_TOKEN_TTL_SECONDS = 86400  # 1 day

# update-timings --auto default window length (minutes)
DEFAULT_AUTO_PERIOD_MINUTES = 60

# Registration export: column holding the completion status, name and email
REGISTRATION_STATUS_COLUMN = 18
REGISTRATION_NAME_COLUMN = 1
REGISTRATION_EMAIL_COLUMN = 2
REGISTRATION_COMPLETE = "Complete"
