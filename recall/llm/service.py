"""Prompt-to-payload adapter for text generation.

Model call flow:
    prompt -> payload construction -> `client.send_request(...)`.

Token behavior:
    No token-budget enforcement here; the prompt is already budgeted by
    `MemoryService.get_current_context`.
"""

from recall.llm.client import send_request
from recall.llm.provider_config import MODEL_NAME, SYSTEM_MESSAGE


def build_payload(prompt: str, stream: bool = False) -> dict:
    """OpenAI-style chat payload with the shared generation defaults."""
    return {
        "model": MODEL_NAME,
        "messages": [
            {"role": "system", "content": SYSTEM_MESSAGE},
            {"role": "user", "content": prompt}
        ],
        "temperature": 0.45,
        "top_p": 0.9,
        "presence_penalty": 0.4,
        "frequency_penalty": 0.5,
        "stream": stream
    }


def generate_answer(prompt: str, stream=False):
    """Invoke the configured model.

    Args:
        prompt: Fully constructed prompt from `recall.prompting.prompt_builder`.
        stream: Request token streaming.

    Returns:
        A generator in streaming mode, the final string otherwise, or a sanitized
        error string (failures are returned, not raised; see `client`).
    """
    return send_request(build_payload(prompt, stream), stream)
