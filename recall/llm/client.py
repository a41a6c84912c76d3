"""Transport client for OpenAI-compatible chat-completion providers.

Model invocation flow:
    `service.generate_answer` -> `send_request(payload, stream)` -> HTTP POST ->
    parsed text (or streamed deltas).

Retry behavior:
    No retry loop. Each HTTP call is attempted once with the configured timeout.

Failure handling model:
    Exceptions are converted into sanitized, provider-labeled error strings (or a
    final streamed error chunk) so the chat loop keeps running.
"""

import json
import logging

import requests

from recall.llm.provider_config import (
    PROVIDER,
    PROVIDERS,
    REQUEST_TIMEOUT,
    load_key,
)


logger = logging.getLogger(__name__)


def _build_sanitized_http_error(provider_name: str, err: requests.exceptions.RequestException) -> str:
    """Provider-labeled HTTP error text with the status code when one is known."""
    status_code = None
    if getattr(err, "response", None) is not None:
        status_code = getattr(err.response, "status_code", None)

    label = str(provider_name or "provider").upper()
    if status_code:
        return f"\n{label} HTTP ERROR ({status_code})\n"
    return f"\n{label} HTTP ERROR\n"


def _extract_delta(data: dict):
    """Pull the text fragment out of one streamed chunk, if it carries any."""
    if "choices" in data and data["choices"]:
        choice = data["choices"][0]
        if "delta" in choice and "content" in choice["delta"]:
            return choice["delta"]["content"]
        if "message" in choice and "content" in choice["message"]:
            return choice["message"]["content"]
        if "text" in choice:
            return choice["text"]
    elif "message" in data and "content" in data["message"]:
        return data["message"]["content"]
    return None


def _stream_deltas(url: str, headers: dict, payload: dict, provider: str):
    """Yield incremental text deltas from a line-delimited SSE response."""
    try:
        with requests.post(
            url,
            headers=headers,
            json=payload,
            stream=True,
            timeout=REQUEST_TIMEOUT,
        ) as response:
            response.raise_for_status()
            response.encoding = "utf-8"

            for line in response.iter_lines(decode_unicode=True):
                if not line:
                    continue

                if line.startswith("data: "):
                    line = line[6:]

                if line.strip() == "[DONE]":
                    break

                try:
                    data = json.loads(line)
                except ValueError:
                    continue

                delta = _extract_delta(data)
                if delta:
                    yield delta
    except requests.exceptions.RequestException as err:
        logger.warning("Streaming request to %s failed: %s", provider, err)
        yield _build_sanitized_http_error(provider, err)


def send_request(payload: dict, stream: bool, provider: str = PROVIDER):
    """Send one chat-completion request and return the generated text.

    Args:
        payload: OpenAI-style request body.
        stream: Return a generator of text deltas instead of the final string.
        provider: Key into `PROVIDERS`.

    Returns:
        - A generator of deltas when `stream` is true.
        - The final stripped response string otherwise.
        - A sanitized error string on failure.
    """
    config = PROVIDERS.get(provider)
    if config is None:
        return "\nINVALID PROVIDER\n"

    headers = {
        "Content-Type": "application/json"
    }

    if config["key_file"]:
        api_key = load_key(config["key_file"])
        if not api_key:
            return f"\n{provider.upper()} KEY FILE NOT FOUND\n"
        headers["Authorization"] = f"Bearer {api_key}"

    if stream:
        return _stream_deltas(config["url"], headers, payload, provider)

    try:
        response = requests.post(
            config["url"],
            headers=headers,
            json=payload,
            timeout=REQUEST_TIMEOUT,
        )
        response.raise_for_status()
        data = response.json()
        return data["choices"][0]["message"]["content"].strip()

    except requests.exceptions.RequestException as err:
        logger.warning("Request to %s failed: %s", provider, err)
        return _build_sanitized_http_error(provider, err)

    except (KeyError, IndexError, TypeError, ValueError):
        logger.exception("Unexpected response shape from %s", provider)
        return f"\n{provider.upper()} REQUEST FAILED\n"
