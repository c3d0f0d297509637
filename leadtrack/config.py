"""
Centralized configuration — env vars, timezone, postback vocabulary.
"""
import os


# ── Logging ──────────────────────────────────────────────────────────────────
LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')
LOG_FORMAT = os.getenv('LOG_FORMAT', 'text')

# ── Redis ─────────────────────────────────────────────────────────────────────
REDIS_URL = os.getenv('REDIS_URL', 'redis://localhost:6379/0')

# ── PostgreSQL ────────────────────────────────────────────────────────────────
DATABASE_URL = os.getenv('DATABASE_URL', 'sqlite:///local.db')

# ── Timezone ──────────────────────────────────────────────────────────────────
# Attribution dates and arrival timestamps are both recorded in this zone.
LOCAL_TIMEZONE = os.getenv('LOCAL_TIMEZONE', 'America/Sao_Paulo')

# ── Postback locking ─────────────────────────────────────────────────────────
# 'local' serializes per lead identity inside one process, 'redis' across processes,
# 'none' disables locking.
POSTBACK_LOCK_BACKEND = os.getenv('POSTBACK_LOCK_BACKEND', 'local')
POSTBACK_LOCK_TIMEOUT = int(os.getenv('POSTBACK_LOCK_TIMEOUT', '10'))
POSTBACK_LOCK_WAIT = int(os.getenv('POSTBACK_LOCK_WAIT', '5'))

# ── Microsoft Clarity ────────────────────────────────────────────────────────
CLARITY_API_TOKEN = os.getenv('CLARITY_API_TOKEN')
CLARITY_API_URL = os.getenv(
    'CLARITY_API_URL', 'https://www.clarity.ms/export-data/api/v1/project-live-insights',
)
CLARITY_DAILY_LIMIT = int(os.getenv('CLARITY_DAILY_LIMIT', '10'))

# ── Google Analytics (GA4 Data API) ──────────────────────────────────────────
GA_PROPERTY_ID = os.getenv('GA_PROPERTY_ID', '')
# Service-account JSON, or a path to the JSON file
GA_CREDENTIALS = os.getenv('GA_CREDENTIALS', '')
GA_CREDENTIALS_DIR = os.getenv('GA_CREDENTIALS_DIR', '.')
# Prefixed to relative page paths so stored URLs are absolute
GA_BASE_URL = os.getenv('GA_BASE_URL', '').rstrip('/')

# ── Admin ────────────────────────────────────────────────────────────────────
ALLOW_CLEAR_ALL = os.getenv('ALLOW_CLEAR_ALL', 'false').lower() in ('1', 'true', 'yes')

# ── Notification types ───────────────────────────────────────────────────────
NOTIFICATION_LEAD = 'lead'
NOTIFICATION_CONVERSION = 'conversao'
NOTIFICATION_CANCEL = 'cancel'
NOTIFICATION_TRASH = 'trash'

NOTIFICATION_TYPES = [
    NOTIFICATION_LEAD,
    NOTIFICATION_CONVERSION,
    NOTIFICATION_CANCEL,
    NOTIFICATION_TRASH,
]

# ── Template placeholders the network forgets to substitute ─────────────────
PLACEHOLDER_TOKENS = {
    '{leadId}', '{offerId}', '{offer_id}', '{lead_id}',
    '{sub1}', '{sub2}', '{sub3}', '{sub4}', '{sub5}', '{sub6}',
    '{sub_id1}', '{sub_id2}', '{sub_id3}', '{sub_id4}', '{sub_id5}', '{sub_id6}',
}

# ── Reporting labels ─────────────────────────────────────────────────────────
UNTRACKED = 'untracked'
UNTRACKED_ALIASES = {'', 'n/a', 'sem-trackeamento', UNTRACKED}

# Counter buckets never key on NULL (NULLs defeat the unique constraint).
MISSING_BUCKET = 'N/A'
