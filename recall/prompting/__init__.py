"""Prompting package.

Deterministic prompt-construction helpers that render assembled memory context.
No retrieval, budgeting or model invocation happens here.
"""
