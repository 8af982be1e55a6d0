"""
Assistant CLI package.

This package provides a command-line interface (CLI) for sending prompts
to a local Ollama text-generation service and rendering the reply in the
terminal.  Each request carries:

* The user's prompt, given on the command line or typed interactively.
* A static system instruction from the user's settings.
* A bounded context packet describing the current working directory
  (file listing plus README and manifest contents), unless disabled.

Replies are streamed and rendered fragment by fragment by default.

See `cli.py` for the entry point.
"""

__version__ = "0.1.0"

__all__ = [
    "cli",
]
