"""Centralized model configuration, pricing and control-loop defaults."""

# Model IDs for the oracle roles
MODELS = {
    "planner": "claude-sonnet-4-20250514",
    "evaluator": "claude-haiku-4-5-20251001",
}

# Pricing per million tokens (USD)
PRICING = {
    "claude-haiku-4-5-20251001": {"input": 0.80, "output": 4.00},
    "claude-sonnet-4-20250514": {"input": 3.00, "output": 15.00},
    "claude-opus-4-20250115": {"input": 15.00, "output": 75.00},
}

# Default budget per run
DEFAULT_BUDGET_USD = 5.00

# Default viewport
DEFAULT_VIEWPORT = (1400, 900)

# Oracle gateway
DEFAULT_MAX_ATTEMPTS = 4
DEFAULT_CALLS_PER_WINDOW = 50
DEFAULT_WINDOW_SECONDS = 60.0
RATE_LIMIT_DELAYS = (1.0, 2.0, 5.0, 10.0, 30.0)
BACKOFF_BASE_SECONDS = 1.0
BACKOFF_MAX_SECONDS = 5.0
CEILING_STEP = 10
CEILING_FLOOR = 1

# Control loop
MAX_CYCLES = 20
FAILURE_CEILING = 3
CONFIDENCE_THRESHOLD = 0.7
HISTORY_WINDOW = 15
TASK_WAIT_MS = 1000

# Executor timings (ms)
CLICK_SETTLE_MS = 1500
TYPE_SETTLE_MS = 500
ACTION_TIMEOUT_MS = 10_000
PAGE_LOAD_TIMEOUT_MS = 30_000

# Scheduler
MAX_CONCURRENT_TASKS = 5
TASK_TIMEOUT_SECONDS = 60.0
MAX_TABS = 10
