"""
Constants and configuration values for SCP reranking.
"""

# Text Preprocessing
MAX_CONTENT_CHARS = 30000  # ~8k tokens for text-embedding-3-small
CHARS_PER_TOKEN_ESTIMATE = 4

# Embedding
EMBEDDING_MODEL = "text-embedding-3-small"
EMBEDDING_DIMENSIONS = 1536
EMBEDDING_COST_PER_MILLION_TOKENS = 0.02

# Tagging
TAGGING_OPENAI_MODEL = "gpt-4o-mini"
TAGGING_CLAUDE_MODEL = "claude-3-haiku-20240307"
TAGGING_MAX_TOKENS = 300
TAGGING_OUTPUT_TOKENS_ESTIMATE = 80  # Typical JSON answer, for dry runs
TAGGING_PRICES_PER_MILLION_TOKENS = {
    # provider: (input, output)
    "openai": (0.15, 0.60),
    "claude": (0.25, 1.25),
}
MAX_GENRE_TAGS = 3
MAX_THEME_TAGS = 5

# Tag Vocabulary
OBJECT_CLASSES = (
    "Safe",
    "Euclid",
    "Keter",
    "Thaumiel",
    "Apollyon",
    "Archon",
    "Neutralized",
    "Explained",
)
FALLBACK_OBJECT_CLASS = "Other"
FALLBACK_FORMAT = "standard"
GENRES = (
    "horror",
    "sci-fi",
    "fantasy",
    "comedy",
    "mystery",
    "tragedy",
    "action",
    "slice-of-life",
)
THEMES = (
    "cognition",
    "memetic",
    "biological",
    "temporal",
    "extradimensional",
    "reality-bending",
    "mechanical",
    "humanoid",
    "sentient",
    "spatial",
    "religious",
    "artifact",
)
FORMATS = (
    "standard",
    "interview",
    "exploration-log",
    "experiment-log",
    "tale",
    "unusual",
)

# Batch Processing
BATCH_SIZE = 10
BATCH_DELAY_SECONDS = 1.0  # Pause between batches, not after the last one
MAX_ATTEMPTS = 3  # Per item, including the first call
RETRY_BASE_DELAY_SECONDS = 1.0  # Backoff = base * 2 ** attempt
RETRY_MAX_DELAY_SECONDS = 60.0

# Provider HTTP
OPENAI_BASE_URL = "https://api.openai.com/v1"
ANTHROPIC_BASE_URL = "https://api.anthropic.com/v1"
ANTHROPIC_VERSION = "2023-06-01"
OPENAI_REQUESTS_PER_MINUTE = 500
ANTHROPIC_REQUESTS_PER_MINUTE = 50
LLM_TEMPERATURE = 0.0
HTTP_CONNECT_TIMEOUT = 10.0
HTTP_READ_TIMEOUT = 60.0
HTTP_WRITE_TIMEOUT = 10.0
HTTP_POOL_TIMEOUT = 5.0
HTTP_USER_AGENT = "scp-rerank/0.1"

# Search
DEFAULT_SEARCH_LIMIT = 5
DEFAULT_QUERY_ID = "SCP-173"
HYBRID_OVERFETCH_FACTOR = 3  # Candidates fetched per returned result
DEFAULT_EMBEDDING_WEIGHT = 0.7
DEFAULT_TAG_WEIGHT = 0.3
SEARCH_RPC_NAME = "search_similar_articles"
VERIFY_TOP_K = 10

# Store Tables
ARTICLES_TABLE = "scp_articles"
EMBEDDINGS_TABLE = "scp_embeddings"
TAGS_TABLE = "tags"
ARTICLE_TAGS_TABLE = "article_tags"

# Crawler
SCP_DATA_API_URL = "https://scp-data.tedivm.com/data/scp/items"
DEFAULT_FETCH_LIMIT = 10
LOCAL_DATA_DIR = "data"
LOCAL_ARTICLES_FILE = "articles.json"

# Report
REPORT_OUTPUT_PATH = "docs/poc-report.md"
TOTAL_SCP_ARTICLES = 10000  # Production corpus size for cost scaling
SUPABASE_MONTHLY_COST = 25
MONTHLY_UPDATE_FRACTION = 0.1
RUN_STATS_FILE = "run_stats.json"
