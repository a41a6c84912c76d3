"""Provider/runtime configuration for the text-generation layer.

Architectural role:
    Centralizes model/provider selection and credential lookup for
    `recall.llm.service` and `recall.llm.client`. Only the CLI chat loop generates
    text; the memory engine itself never calls a model.

Determinism:
    Values are resolved at import time from the process environment (and `.env`),
    plus runtime key-file reads in `load_key`.

Failure behavior:
    Missing key material is represented as `None` and reported by `client` as a
    provider-labeled error string.
"""

import os

from dotenv import load_dotenv

load_dotenv()

# Primary model routing controls.
PROVIDER = os.getenv("RECALL_LLM_PROVIDER", "local")
MODEL_NAME = os.getenv("RECALL_LLM_MODEL", "qwen2.5:3b")
REQUEST_TIMEOUT = float(os.getenv("RECALL_LLM_TIMEOUT", "120"))

# OpenAI-compatible chat-completions endpoints.
PROVIDERS = {

    "local": {
        "url": os.getenv("RECALL_LLM_URL", "http://127.0.0.1:8080/v1/chat/completions"),
        "key_file": None
    },

    "openai": {
        "url": "https://api.openai.com/v1/chat/completions",
        "key_file": "config/openai.key"
    },

    "groq": {
        "url": "https://api.groq.com/openai/v1/chat/completions",
        "key_file": "config/groq.key"
    },

    "together": {
        "url": "https://api.together.xyz/v1/chat/completions",
        "key_file": "config/together.key"
    },

    "openrouter": {
        "url": "https://openrouter.ai/api/v1/chat/completions",
        "key_file": "config/openrouter.key"
    },

    "mistral": {
        "url": "https://api.mistral.ai/v1/chat/completions",
        "key_file": "config/mistral.key"
    },

}


# Prepended as the system message by `service.generate_answer`.
SYSTEM_MESSAGE = (
    "You are a helpful assistant with a long-term memory of earlier conversations.\n"
    "Use the remembered conversation only when it is relevant to the question.\n"
    "Answer precisely, clearly and without repetition.\n"
)


def load_key(path):
    """Load an API key from an environment override or a key file.

    Resolution order:
        1. Environment variable inferred from the file stem (for example
           `config/openai.key` -> `OPENAI_API_KEY`).
        2. Raw file contents at `path`.

    Returns:
        Key string or `None` when not available (including a `None` path).
    """
    if not path:
        return None
    key_name = os.path.splitext(os.path.basename(path))[0].upper() + "_API_KEY"
    env_value = os.getenv(key_name)
    if env_value:
        return env_value
    if not os.path.exists(path):
        return None
    with open(path, "r") as f:
        return f.read().strip()
