"""
Interactive terminal chat over the memory engine.

Architectural role:
- Exposes a chat loop where every turn is remembered by `MemoryService`.
- Builds each prompt from `MemoryService.get_current_context` and delegates text
  generation to `recall.llm.service.generate_answer`.

Request lifecycle (per user turn):
1. Read stdin.
2. Handle local control commands (see below).
3. Assemble context, build the prompt, generate the answer.
4. Print streamed chunks or the scalar response.
5. Store the (question, answer) interaction.

Local commands:
- `exit` / `quit`: stop the loop (the service is closed on exit).
- `clear chat` / `empty chat`: drop the short-term window.
- `/search <text>`: hybrid search over long-term memory.
- `/summary`: summarize and store the current conversation.
- `/stats`: print service diagnostics.

Error handling strategy:
- EOF and keyboard interrupts terminate the loop without traceback output.
- Embedding/store failures of a single turn are reported and the loop continues.
"""

import logging
import os
import sys

from dotenv import load_dotenv

from recall.core.memory_service import MemoryService
from recall.errors import RecallError
from recall.llm.service import generate_answer
from recall.prompting.prompt_builder import build_conversation_prompt, build_search_listing


logger = logging.getLogger(__name__)

EXIT_COMMANDS = ("exit", "quit")
CLEAR_COMMANDS = ("empty chat", "clear chat")


def configure_logging() -> None:
    """Root logging setup from `RECALL_LOG_LEVEL` (default `WARNING`)."""
    level = os.getenv("RECALL_LOG_LEVEL", "WARNING").upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def render_response(response) -> str:
    """Print a streamed or scalar model response and return its full text."""
    if hasattr(response, "__iter__") and not isinstance(response, str):
        full_text = ""
        for chunk in response:
            print(chunk, end="", flush=True)
            full_text += chunk
        print()
        return full_text.strip()

    print(response)
    return str(response).strip()


def handle_command(service: MemoryService, question: str) -> bool:
    """Run a local command. Returns `True` when `question` was one."""
    lowered = question.lower()

    if lowered in CLEAR_COMMANDS:
        service.clear_context()
        print("Chat cleared.")
        return True

    if lowered.startswith("/search"):
        text = question[len("/search"):].strip()
        if not text:
            print("Usage: /search <text>")
        else:
            print(build_search_listing(service.search(text)))
        return True

    if lowered == "/summary":
        summary = service.summarize_conversation()
        if not summary.text:
            print("Nothing to summarize yet.")
        else:
            print(summary.text)
            print(f"\nKey topics: {', '.join(summary.key_topics) or '-'}")
        return True

    if lowered == "/stats":
        for key, value in service.get_statistics().to_dict().items():
            print(f"{key}: {value}")
        print(service.context_manager.get_full_history().get_summary())
        return True

    return False


def chat_turn(service: MemoryService, question: str, stream: bool = True) -> str:
    """Generate an answer with assembled context and remember the interaction."""
    context = service.get_current_context()
    prompt = build_conversation_prompt(question, context)

    answer = render_response(generate_answer(prompt, stream=stream))
    if answer:
        service.store(question, answer)
    return answer


def run(service: MemoryService, stream: bool = True) -> None:
    """Input loop until EOF, interrupt or an exit command."""
    print("Recall chat started. (Type 'exit' to quit)")
    print(f"Long-term memories loaded: {service.get_statistics().total_entries}")
    print("-" * 60)

    while True:

        try:
            question = input("You: ").strip()

        except EOFError:
            print()
            break

        except KeyboardInterrupt:
            print("\nOperation cancelled by user.")
            break

        if not question:
            continue

        if question.lower() in EXIT_COMMANDS:
            print("Shutting down.")
            break

        try:
            if handle_command(service, question):
                continue

            print("\nAssistant:\n")
            chat_turn(service, question, stream=stream)
        except RecallError as exc:
            logger.error("Turn failed: %s", exc)
            print(f"\nMemory error: {exc}\n")

        print("\n" + "-" * 60 + "\n")


def main() -> None:
    load_dotenv()
    configure_logging()

    if hasattr(sys.stdout, "reconfigure"):
        sys.stdout.reconfigure(encoding="utf-8", errors="ignore")

    try:
        service = MemoryService.from_env()
    except RecallError as exc:
        print(f"Startup error: {exc}")
        return

    with service:
        run(service)


if __name__ == "__main__":
    main()
