"""LLM access package used by the terminal chat loop.

Module split:
    - `provider_config`: environment-driven provider and model configuration.
    - `service`: prompt-to-payload adapter.
    - `client`: OpenAI-compatible HTTP transport and response parsing.
"""
