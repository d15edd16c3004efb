import os
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables from ENV_FILE if specified, or .env.local, or .env
env_file = os.getenv('ENV_FILE')
if env_file:
    load_dotenv(Path(env_file))
else:
    # Try .env.local first, then fall back to .env
    env_local = Path(__file__).parent.parent / '.env.local'
    if env_local.exists():
        load_dotenv(env_local)
    else:
        load_dotenv()


def _number_from_env(key: str, fallback: int) -> int:
    """Extract integer from environment variable with fallback."""
    raw = os.getenv(key)
    if raw is None:
        return fallback

    try:
        return int(raw)
    except ValueError:
        return fallback


# Agent loop tunables
MAX_PLAN_STEPS = _number_from_env('MAX_PLAN_STEPS', 15)
MAX_RETRIES = _number_from_env('MAX_RETRIES', 2)
MAX_REPLANS = _number_from_env('MAX_REPLANS', 3)
TOOL_TIMEOUT_MS = _number_from_env('TOOL_TIMEOUT_MS', 30 * 1000)
TASK_TIMEOUT_MS = _number_from_env('TASK_TIMEOUT_MS', 5 * 60 * 1000)
RETRY_BASE_DELAY_MS = _number_from_env('RETRY_BASE_DELAY_MS', 1000)
MAX_CONCURRENT_TASKS = _number_from_env('MAX_CONCURRENT_TASKS', 4)

# Persistence
STORE_BACKEND = os.getenv('STORE_BACKEND', 'memory').lower()
DATABASE_URL = os.getenv(
    'DATABASE_URL',
    'postgres://taskpilot@localhost:5432/taskpilot'
)

# Concurrency guard
LOCK_DIR = os.getenv('LOCK_DIR', os.getcwd())
LOCK_STALE_SECONDS = _number_from_env('LOCK_STALE_SECONDS', 300)
BROWSER_PROCESS_PATTERN = os.getenv('BROWSER_PROCESS_PATTERN', 'chrome')

# Scoped directory for file, shell and git tools
WORKSPACE_DIR = os.getenv('WORKSPACE_DIR', str(Path.cwd() / 'workspace'))

HEALTH_PORT = _number_from_env('HEALTH_PORT', 8080)

# Background loops
LOOP_CONFIG = {
    'lock_watch_interval_ms': _number_from_env(
        'LOCK_WATCH_INTERVAL_MS',
        60 * 1000  # 1 minute
    ),
    'memory_digest_interval_ms': _number_from_env(
        'MEMORY_DIGEST_INTERVAL_MS',
        60 * 60 * 1000  # 1 hour
    ),
    'backoff_base_ms': 5 * 60 * 1000,  # 5 minutes
    'backoff_cap_ms': 2 * 60 * 60 * 1000,  # 2 hours
}

# Language model backends. Any subset may be configured; order decides fallback.
LLM_PROVIDER_ORDER = [
    name.strip().lower()
    for name in os.getenv(
        'LLM_PROVIDER_ORDER',
        'anthropic,openai,xai,deepseek,ollama,custom'
    ).split(',')
    if name.strip()
]
LLM_TIMEOUT_SECONDS = _number_from_env('LLM_TIMEOUT_SECONDS', 120)

OPENAI_API_KEY = os.getenv('OPENAI_API_KEY')
OPENAI_BASE_URL = os.getenv('OPENAI_BASE_URL', 'https://api.openai.com/v1')
OPENAI_MODEL = os.getenv('OPENAI_MODEL', 'gpt-4o')

ANTHROPIC_API_KEY = os.getenv('ANTHROPIC_API_KEY')
ANTHROPIC_MODEL = os.getenv('ANTHROPIC_MODEL', 'claude-sonnet-4-20250514')

XAI_API_KEY = os.getenv('XAI_API_KEY')
XAI_BASE_URL = os.getenv('XAI_BASE_URL', 'https://api.x.ai/v1')
XAI_MODEL = os.getenv('XAI_MODEL', 'grok-3-latest')

# DeepSeek AI Configuration (OpenAI-compatible API)
DEEPSEEK_API_KEY = os.getenv('DEEPSEEK_API_KEY')
DEEPSEEK_BASE_URL = os.getenv('DEEPSEEK_BASE_URL', 'https://api.deepseek.com')
DEEPSEEK_MODEL = os.getenv('DEEPSEEK_MODEL', 'deepseek-chat')

OLLAMA_HOST = os.getenv('OLLAMA_HOST')
OLLAMA_MODEL = os.getenv('OLLAMA_MODEL')

# Any other OpenAI-compatible endpoint
LLM_API_KEY = os.getenv('LLM_API_KEY')
LLM_BASE_URL = os.getenv('LLM_BASE_URL')
LLM_MODEL = os.getenv('LLM_MODEL', 'default')
