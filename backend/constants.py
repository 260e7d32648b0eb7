"""
BEHAVIOR-AS-CONSTANTS
---------------------
Single source of truth for every threshold, cap, window and version string
used by the call coaching core.

Rules:
- If changing a value changes runtime behavior, it belongs here.
- No magic numbers elsewhere in the codebase.
- Version strings MUST be bumped whenever a validated output shape changes.
"""

from __future__ import annotations

from typing import Final, Tuple

# =============================================================================
# Conversation State Reducer
# =============================================================================

TRANSCRIPT_WINDOW_SIZE: Final[int] = 20

# Confidence bookkeeping on finalized utterances
LOW_CONFIDENCE_THRESHOLD: Final[float] = 0.7   # strictly below counts as low
HIGH_CONFIDENCE_THRESHOLD: Final[float] = 0.9  # at or above counts as high

# =============================================================================
# Context Serializer
# =============================================================================

MIN_UTTERANCE_CONFIDENCE: Final[float] = 0.7
MAX_CONTEXT_UTTERANCES: Final[int] = 15

# Order: filter by confidence FIRST, then keep the most recent N.

# =============================================================================
# Deterministic Signal Extractor
# =============================================================================

SIGNALS_VERSION: Final[str] = "3A.0"

TALK_RATIO_REP_LOW: Final[float] = 0.3
TALK_RATIO_REP_HIGH: Final[float] = 0.7
TALK_RATIO_REP_VERY_LOW: Final[float] = 0.15
TALK_RATIO_REP_VERY_HIGH: Final[float] = 0.85

LONG_SILENCE_MS: Final[int] = 5_000
FREQUENT_SILENCE_PER_MINUTE: Final[float] = 5.0
LOW_AVG_CONFIDENCE: Final[float] = 0.7
SPARSE_TRANSCRIPT_UTTERANCES: Final[int] = 3

MAX_SIGNALS: Final[int] = 10
KEYWORD_WINDOW_UTTERANCES: Final[int] = 10
MAX_KEYWORD_MATCHES_PER_SIGNAL: Final[int] = 3
SNIPPET_MAX_CHARS: Final[int] = 120

# Two-tier confidences
SIGNAL_CONFIDENCE_STRONG: Final[float] = 0.95
SIGNAL_CONFIDENCE_MODERATE: Final[float] = 0.85
SIGNAL_CONFIDENCE_DEFINITE: Final[float] = 0.9
SIGNAL_CONFIDENCE_KEYWORD: Final[float] = 0.5

FREQUENT_SILENCE_BASE_CONFIDENCE: Final[float] = 0.8
FREQUENT_SILENCE_CONFIDENCE_STEP: Final[float] = 0.02

PRICING_KEYWORDS: Final[Tuple[str, ...]] = (
    "price", "pricing", "cost", "budget", "expensive", "cheaper", "quote",
)
COMPETITOR_KEYWORDS: Final[Tuple[str, ...]] = (
    "salesforce", "hubspot", "zoho", "pipedrive", "microsoft", "dynamics",
    "sap", "oracle",
)
INTEGRATION_KEYWORDS: Final[Tuple[str, ...]] = (
    "integrate", "integration", "api", "webhook", "sync", "connector",
    "works with", "connect to",
)

# =============================================================================
# AI Signals / Recommendations (grounding)
# =============================================================================

AI_SIGNALS_VERSION: Final[str] = "3B.0"
RECOMMENDATIONS_VERSION: Final[str] = "4.0"
SUMMARY_VERSION: Final[str] = "1.0"

MAX_AI_SIGNALS: Final[int] = 12
MAX_RECOMMENDATIONS: Final[int] = 5

MAX_LABEL_CHARS: Final[int] = 50
MAX_QUOTE_CHARS: Final[int] = 120
MAX_TITLE_CHARS: Final[int] = 60
MAX_SCRIPT_CHARS: Final[int] = 600
MAX_WARNING_CHARS: Final[int] = 200
MAX_WARNINGS: Final[int] = 5

MAX_SUMMARY_TITLE_CHARS: Final[int] = 80
MAX_SUMMARY_BULLETS: Final[int] = 6
MAX_BULLET_CHARS: Final[int] = 200
MAX_SUMMARY_TEXT_CHARS: Final[int] = 1_500

DEFAULT_RECOMMENDATION_CONFIDENCE: Final[float] = 0.5

AI_SIGNALS_MAX_OUTPUT_TOKENS: Final[int] = 2_048
RECOMMENDATIONS_MAX_OUTPUT_TOKENS: Final[int] = 2_048
SUMMARY_MAX_OUTPUT_TOKENS: Final[int] = 300
LIVE_MAX_OUTPUT_TOKENS: Final[int] = 1_000

LLM_TEMPERATURE: Final[float] = 0.3
SUMMARY_TEMPERATURE: Final[float] = 0.5

# Display banding for recommendation priority
PRIORITY_HIGH_MIN_CONFIDENCE: Final[float] = 0.8
PRIORITY_MEDIUM_MIN_CONFIDENCE: Final[float] = 0.5

# Marker used when the pipeline ran without a language model
NO_MODEL: Final[str] = "none"

# =============================================================================
# Live Recommendation Orchestrator
# =============================================================================

LIVE_CACHE_TTL_MS: Final[int] = 60_000
LIVE_DEBOUNCE_WINDOW_MS: Final[int] = 500
LIVE_MAX_CONTEXT_UTTERANCES: Final[int] = 10
LIVE_REQUEST_TIMEOUT_MS: Final[int] = 3_000
LIVE_HISTORY_LIMIT: Final[int] = 20

KNOWLEDGE_RESULT_LIMIT: Final[int] = 3
KNOWLEDGE_MIN_SIMILARITY: Final[float] = 0.3
KNOWLEDGE_CHUNK_MAX_CHARS: Final[int] = 800

# =============================================================================
# Batch Pipeline
# =============================================================================

# Gap between consecutive segments that is recorded as a silence event
SILENCE_GAP_MS: Final[int] = 500

# Deepgram word grouping when no utterances are returned
TRANSCRIPT_WORD_GAP_S: Final[float] = 1.0

DEEPGRAM_LISTEN_URL: Final[str] = "https://api.deepgram.com/v1/listen"
TRANSCRIPTION_TIMEOUT_S: Final[float] = 300.0
STORAGE_TIMEOUT_S: Final[float] = 30.0

# =============================================================================
# Job Worker
# =============================================================================

JOB_POLL_INTERVAL_MS: Final[int] = 2_000
STALE_SWEEP_INTERVAL_MS: Final[int] = 60_000
STALE_JOB_THRESHOLD_S: Final[int] = 15 * 60
STALE_REQUEUE_BACKOFF_S: Final[int] = 30  # multiplied by attempt_count

JOB_MAX_ATTEMPTS: Final[int] = 3
JOB_BACKOFF_BASE_S: Final[int] = 10
JOB_BACKOFF_MULTIPLIER: Final[int] = 3
JOB_BACKOFF_MAX_S: Final[int] = 300

MAX_ERROR_CHARS: Final[int] = 1_000
STALE_JOB_ERROR: Final[str] = "Job timed out (stale)"

# =============================================================================
# Per-stage Retry Policies  (attempts, initial_ms, max_ms)
# =============================================================================

RETRY_MULTIPLIER: Final[float] = 2.0

DOWNLOAD_RETRY: Final[Tuple[int, int, int]] = (3, 2_000, 10_000)
TRANSCRIBE_RETRY: Final[Tuple[int, int, int]] = (3, 2_000, 15_000)
AI_SIGNALS_RETRY: Final[Tuple[int, int, int]] = (2, 2_000, 10_000)
RECOMMENDATIONS_RETRY: Final[Tuple[int, int, int]] = (2, 2_000, 10_000)
SUMMARY_RETRY: Final[Tuple[int, int, int]] = (3, 1_000, 10_000)
CRITICAL_WRITE_RETRY: Final[Tuple[int, int, int]] = (3, 1_000, 5_000)
