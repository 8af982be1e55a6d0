"""
Entry point for the assistant command-line interface (exposed as `assistant`).

The assistant CLI forwards a prompt to a local Ollama service and renders
the reply in the terminal.  Unless disabled, a short description of the
current working directory (file listing plus README and manifest
contents) is appended to the system instructions so the model can answer
questions about the project at hand.

Usage examples::

    # Ask a one-off question about the current project
    assistant explain what this project does

    # Use a different model and temperature for one run
    assistant -m codellama -t 0.2 write a unit test for main.rs

    # Type a multi-line prompt (finish with Ctrl+D or a line reading END)
    assistant

    # Manage settings
    assistant --list
    assistant --set-default llama3.2
    assistant --config
    assistant --reset

During development the CLI can also be run with::

    python -m assistant.cli
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional, TextIO

from .config import AssistantConfig, default_config_path
from .context_builder import build_context_packet, estimate_tokens
from .ollama_client import OllamaClient, OllamaError, compose_request, consume_stream

logger = logging.getLogger("assistant.cli")

BOLD = "\033[1m"
DIM = "\033[2m"
GREEN = "\033[32m"
YELLOW = "\033[33m"
CYAN = "\033[36m"
RED = "\033[31m"
BRIGHT_YELLOW = "\033[93m"
RESET = "\033[0m"

RULE_WIDTH = 60


def _use_color(stream: TextIO) -> bool:
    if os.environ.get("NO_COLOR"):
        return False
    isatty = getattr(stream, "isatty", None)
    return bool(isatty and isatty())


def paint(text: str, *codes: str) -> str:
    """Wrap `text` in ANSI codes when stdout is a terminal."""
    if not codes or not _use_color(sys.stdout):
        return text
    return "".join(codes) + text + RESET


def rule(width: int = RULE_WIDTH) -> str:
    return paint("─" * width, DIM)


def read_multiline_input(stream: TextIO) -> str:
    """Read a prompt until EOF or a line consisting of `END`."""
    print("\n" + paint("Enter your prompt (Ctrl+D or type 'END' on a new line to finish):", DIM))
    print(rule())
    lines: List[str] = []
    for line in stream:
        if line.strip() == "END":
            break
        lines.append(line)
    return "".join(lines).strip()


def show_config(config: AssistantConfig, config_path: Path) -> None:
    print("\n" + paint("Current Configuration:", BOLD, CYAN))
    print(rule(40))
    rows = [
        ("Default Model", paint(config.default_model, GREEN)),
        ("Ollama Host", paint(config.ollama_host, YELLOW)),
        ("Temperature", paint(str(config.temperature), YELLOW)),
        ("Stream", paint(str(config.stream).lower(), YELLOW)),
        ("Include Context", paint(str(config.include_context).lower(), YELLOW)),
        ("Max Context Files", paint(str(config.max_context_files), YELLOW)),
        ("Max File Size", paint(f"{config.max_file_size} bytes", YELLOW)),
        ("Config Path", paint(str(config_path), DIM)),
    ]
    for label, value in rows:
        print(f"  {paint(label, BOLD)}: {value}")
    print()


def list_models(client: OllamaClient, config: AssistantConfig) -> None:
    models = client.list_models()
    print("\n" + paint("Available Models:", BOLD, CYAN))
    print(rule(40))
    if not models:
        print("  " + paint("No models found", RED))
    for model in models:
        name = model.name or "unknown"
        size_mb = (model.size or 0) // (1024 * 1024)
        marker = paint(" ⭐", BRIGHT_YELLOW) if name == config.default_model else ""
        print(f"  {paint(name, GREEN)} ({paint(str(size_mb), YELLOW)} MB){marker}")
    print()


def send_prompt(
    client: OllamaClient,
    config: AssistantConfig,
    prompt: str,
    model: Optional[str] = None,
    temperature: Optional[float] = None,
) -> None:
    """Compose the request for `prompt` and render the reply on stdout."""
    model = model or config.default_model
    temperature = config.temperature if temperature is None else temperature

    context_packet = build_context_packet(config)
    request = compose_request(
        model=model,
        prompt=prompt,
        instruction=config.system_prompt,
        context_packet=context_packet,
        temperature=temperature,
        stream=config.stream,
    )
    if logger.isEnabledFor(logging.INFO):
        logger.info(
            "System instructions: ~%d tokens (context packet %d chars)",
            estimate_tokens(request.system),
            len(context_packet),
        )

    print(f"\n🤖 {paint('Using', DIM)} {paint(model, GREEN, BOLD)} {paint('(thinking)', DIM)}...")

    if config.stream:
        with client.stream_generate(request) as lines:
            print("\n" + rule())
            sys.stdout.write(paint("Assistant:", BOLD, CYAN) + " ")
            sys.stdout.flush()
            result = consume_stream(lines, sys.stdout)
        logger.debug(
            "Stream finished: fragments=%d skipped=%d completed=%s",
            result.fragments, result.skipped, result.completed,
        )
        print("\n" + rule())
    else:
        text = client.generate(request)
        print("\n" + rule())
        print(f"{paint('Assistant:', BOLD, CYAN)} {text}")
        print(rule())


def _configure_logging(level_name: str) -> None:
    level = getattr(logging, (level_name or "WARNING").upper(), logging.WARNING)
    logging.basicConfig(
        level=level,
        format="[%(levelname)s] %(asctime)s %(name)s:%(lineno)d - %(message)s",
    )
    logging.getLogger().setLevel(level)
    logging.getLogger("httpx").setLevel(level)
    # httpcore logs every wire event; only surface it when debugging.
    if level <= logging.DEBUG:
        logging.getLogger("httpcore").setLevel(level)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="assistant",
        description="CLI tool for interacting with Ollama AI models.",
    )
    parser.add_argument("-m", "--model", type=str, default=None, help="Model to use (overrides default).")
    parser.add_argument(
        "-t", "--temperature", type=float, default=None, help="Temperature for generation (0.0 to 1.0)."
    )
    parser.add_argument("--set-default", metavar="MODEL", default=None, help="Set new default model.")
    parser.add_argument("-l", "--list", action="store_true", help="List available models.")
    parser.add_argument("--config", action="store_true", help="Show current configuration.")
    parser.add_argument("--reset", action="store_true", help="Reset configuration to defaults.")
    parser.add_argument(
        "--no-context",
        action="store_true",
        help="Do not send the working directory's structure and key files with the prompt.",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=os.environ.get("ASSISTANT_LOGLEVEL", "WARNING").upper(),
        help="Logging verbosity (default from env ASSISTANT_LOGLEVEL or WARNING).",
    )
    parser.add_argument(
        "prompt",
        nargs="*",
        help="The prompt (if not provided, enters interactive mode).",
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Primary CLI entry point.

    Parses arguments, loads the settings snapshot, handles configuration
    commands, then sends the prompt.  Returns an exit code.
    """
    args = build_parser().parse_args(argv)
    _configure_logging(args.log_level)

    config_path = default_config_path()
    config = AssistantConfig.load(config_path)
    logger.info("Loaded configuration from %s", config_path)

    try:
        # Configuration commands first
        if args.set_default:
            config = config.with_default_model(args.set_default)
            config.save(config_path)
            print(f"✅ Default model set to: {paint(args.set_default, GREEN, BOLD)}")
            return 0

        if args.list:
            with OllamaClient(config.ollama_host) as client:
                list_models(client, config)
            return 0

        if args.config:
            show_config(config, config_path)
            return 0

        if args.reset:
            config = AssistantConfig()
            config.save(config_path)
            print("✅ Configuration reset to defaults")
            show_config(config, config_path)
            return 0

        if args.prompt:
            prompt = " ".join(args.prompt).strip()
        else:
            prompt = read_multiline_input(sys.stdin)

        if not prompt:
            print(paint("No prompt provided. Use --help for usage information.", YELLOW))
            return 0

        if args.no_context:
            config = config.with_overrides(include_context=False)

        with OllamaClient(config.ollama_host) as client:
            send_prompt(client, config, prompt, model=args.model, temperature=args.temperature)
    except OllamaError as exc:
        sys.stdout.flush()
        logger.error("%s", exc)
        return 1
    except OSError as exc:
        logger.error("%s", exc)
        return 1
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main(sys.argv[1:]))
