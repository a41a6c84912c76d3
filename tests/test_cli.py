"""Tests for the terminal chat loop with text generation patched out."""

import builtins

import pytest

from recall.api import cli


@pytest.fixture
def fake_generation(monkeypatch):
    prompts = []

    def fake_generate_answer(prompt, stream=False):
        prompts.append(prompt)
        if stream:
            return iter(["Nice ", "to meet you."])
        return "Nice to meet you."

    monkeypatch.setattr(cli, "generate_answer", fake_generate_answer)
    return prompts


def _feed(monkeypatch, lines):
    answers = iter(lines)

    def fake_input(prompt=""):
        try:
            return next(answers)
        except StopIteration:
            raise EOFError

    monkeypatch.setattr(builtins, "input", fake_input)


def test_chat_turn_stores_interaction(service, fake_generation, capsys):
    answer = cli.chat_turn(service, "My name is Alice")

    assert answer == "Nice to meet you."
    assert "Nice to meet you." in capsys.readouterr().out
    assert service.vector_store.count() == 1
    assert "No earlier conversation available." in fake_generation[0]


def test_second_turn_prompt_includes_history(service, fake_generation):
    cli.chat_turn(service, "My name is Alice", stream=False)
    cli.chat_turn(service, "What is my name?", stream=False)

    assert "User: My name is Alice\nAssistant: Nice to meet you." in fake_generation[1]


def test_run_handles_commands(service, fake_generation, monkeypatch, capsys):
    _feed(monkeypatch, [
        "",
        "My name is Alice",
        "/search alice",
        "/summary",
        "/stats",
        "clear chat",
        "exit",
        "never read",
    ])

    cli.run(service, stream=False)

    out = capsys.readouterr().out
    assert "[1]" in out
    assert "Key topics:" in out
    assert "total_entries: 2" in out
    assert "Chat cleared." in out
    assert "Shutting down." in out
    assert len(fake_generation) == 1
    assert len(service.context_manager) == 0


def test_search_without_text_prints_usage(service, capsys):
    assert cli.handle_command(service, "/search") is True
    assert "Usage: /search <text>" in capsys.readouterr().out


def test_summary_of_empty_conversation(service, capsys):
    assert cli.handle_command(service, "/summary") is True
    assert "Nothing to summarize yet." in capsys.readouterr().out


def test_plain_text_is_not_a_command(service):
    assert cli.handle_command(service, "hello") is False


def test_run_stops_on_eof(service, fake_generation, monkeypatch, capsys):
    _feed(monkeypatch, [])
    cli.run(service)
    assert fake_generation == []
