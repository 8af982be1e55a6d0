"""
Ollama client wrapper for the assistant CLI.

This module encapsulates interactions with a locally reachable Ollama
text-generation service.  It owns the request body, the HTTP session and
the decoding of the streamed reply, so the rest of the application only
deals with plain text and a small set of exceptions.

Streamed replies arrive as newline-delimited JSON objects of the form
`{"response": "<text>", "done": <bool>}`.  Each line is classified on its
own: lines that do not decode to such an object are skipped, and reading
stops at the first fragment marked `done`.
"""

from __future__ import annotations

import json
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Iterator, List, Optional, TextIO, Union

import httpx

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_S = 300.0


class OllamaError(Exception):
    """Base class for failures talking to the service."""


class OllamaRequestError(OllamaError):
    """The service answered with a non-success HTTP status."""

    def __init__(self, status_code: int, reason: str = "") -> None:
        self.status_code = status_code
        self.reason = reason
        detail = f"{status_code} {reason}".strip()
        super().__init__(f"Request failed: {detail}")


class OllamaConnectionError(OllamaError):
    """The service could not be reached, or the reply could not be read."""


@dataclass(frozen=True)
class GenerationRequest:
    """Body of one `/api/generate` call."""

    model: str
    prompt: str
    system: str
    temperature: float
    stream: bool

    def to_payload(self) -> Dict[str, Any]:
        return {
            "model": self.model,
            "prompt": self.prompt,
            "system": self.system,
            "temperature": self.temperature,
            "stream": self.stream,
        }


def compose_request(
    model: str,
    prompt: str,
    instruction: str,
    context_packet: str,
    temperature: float,
    stream: bool,
) -> GenerationRequest:
    """Merge the static instruction with the context packet into one request."""
    return GenerationRequest(
        model=model,
        prompt=prompt,
        system=f"{instruction}\n{context_packet}",
        temperature=temperature,
        stream=stream,
    )


@dataclass(frozen=True)
class Fragment:
    """One decoded unit of a streamed reply."""

    text: str
    is_final: bool


@dataclass(frozen=True)
class Skip:
    """A stream line that carried no fragment."""

    reason: str


def classify_line(line: Union[str, bytes]) -> Union[Fragment, Skip]:
    """Decode one stream line into a Fragment, or say why it was skipped."""
    if isinstance(line, bytes):
        line = line.decode("utf-8", errors="replace")
    if not line.strip():
        return Skip("empty line")
    try:
        data = json.loads(line)
    except ValueError as exc:
        return Skip(f"invalid JSON: {exc}")
    if not isinstance(data, dict):
        return Skip("not a JSON object")
    if "error" in data:
        return Skip(f"error payload: {data['error']}")
    text = data.get("response")
    done = data.get("done")
    if not isinstance(text, str) or not isinstance(done, bool):
        return Skip("missing 'response' or 'done'")
    return Fragment(text=text, is_final=done)


def split_lines(chunks: Iterable[str]) -> Iterator[str]:
    """Yield the lines of a chunked text stream, splitting on "\\n" only.

    A trailing "\\r" is dropped from each line.  Other Unicode line
    separators are kept, since JSON strings may carry them unescaped.  The
    unterminated tail is yielded once the chunks run out.
    """
    pending = ""
    for chunk in chunks:
        pending += chunk
        *complete, pending = pending.split("\n")
        for line in complete:
            yield line[:-1] if line.endswith("\r") else line
    if pending:
        yield pending[:-1] if pending.endswith("\r") else pending


@dataclass(frozen=True)
class StreamResult:
    """Summary of a consumed stream."""

    fragments: int
    skipped: int
    completed: bool


def consume_stream(lines: Iterable[Union[str, bytes]], sink: TextIO) -> StreamResult:
    """Render each fragment's text to `sink` as it arrives.

    Stops at the first final fragment without pulling further lines.  A
    stream that ends without one is still returned as a success, with
    `completed` set to False.  Errors raised by `lines` propagate after
    whatever was already written has been flushed.
    """
    fragments = 0
    skipped = 0
    for line in lines:
        result = classify_line(line)
        if isinstance(result, Skip):
            skipped += 1
            logger.debug("Skipping stream line (%s)", result.reason)
            continue
        fragments += 1
        sink.write(result.text)
        sink.flush()
        if result.is_final:
            return StreamResult(fragments=fragments, skipped=skipped, completed=True)

    # TODO: revisit once the service documents whether a missing final fragment means truncation.
    logger.info("Stream ended without a final fragment; the reply may be incomplete.")
    return StreamResult(fragments=fragments, skipped=skipped, completed=False)


@dataclass(frozen=True)
class ModelInfo:
    """An installed model as reported by `/api/tags`.  Missing fields are None."""

    name: Optional[str] = None
    size: Optional[int] = None

    @classmethod
    def from_json(cls, data: Any) -> "ModelInfo":
        if not isinstance(data, dict):
            return cls()
        name = data.get("name")
        size = data.get("size")
        return cls(
            name=name if isinstance(name, str) else None,
            size=size if isinstance(size, int) and not isinstance(size, bool) else None,
        )


class OllamaClient:
    """Wrapper around the Ollama HTTP API with error translation."""

    def __init__(
        self,
        base_url: str,
        timeout: float = DEFAULT_TIMEOUT_S,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.client = httpx.Client(base_url=self.base_url, timeout=timeout, transport=transport)

    def close(self) -> None:
        self.client.close()

    def __enter__(self) -> "OllamaClient":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    @staticmethod
    def _check_status(response: httpx.Response) -> None:
        if not response.is_success:
            raise OllamaRequestError(response.status_code, response.reason_phrase)

    def _connection_error(self, exc: httpx.HTTPError) -> OllamaConnectionError:
        return OllamaConnectionError(f"Could not talk to {self.base_url}: {exc}")

    @contextmanager
    def stream_generate(self, request: GenerationRequest) -> Iterator[Iterator[str]]:
        """POST a streaming request and yield the reply's line iterator.

        The status is checked before any of the body is read.  The
        connection is released when the block exits, also when the caller
        stops reading early.  Read failures inside the block surface as
        OllamaConnectionError.
        """
        payload = request.to_payload()
        logger.debug("POST /api/generate model=%s stream=%s", request.model, request.stream)
        try:
            with self.client.stream("POST", "/api/generate", json=payload) as response:
                self._check_status(response)
                yield split_lines(response.iter_text())
        except httpx.HTTPError as exc:
            raise self._connection_error(exc) from exc

    def generate(self, request: GenerationRequest) -> str:
        """Send a non-streaming request and return the reply text."""
        logger.debug("POST /api/generate model=%s stream=%s", request.model, request.stream)
        try:
            response = self.client.post("/api/generate", json=request.to_payload())
        except httpx.HTTPError as exc:
            raise self._connection_error(exc) from exc
        self._check_status(response)
        try:
            data = response.json()
        except ValueError as exc:
            raise OllamaError(f"Invalid response body: {exc}") from exc
        text = data.get("response") if isinstance(data, dict) else None
        if not isinstance(text, str):
            raise OllamaError("Response body has no 'response' text")
        return text

    def list_models(self) -> List[ModelInfo]:
        """Return the models installed on the service."""
        try:
            response = self.client.get("/api/tags")
        except httpx.HTTPError as exc:
            raise self._connection_error(exc) from exc
        self._check_status(response)
        try:
            data = response.json()
        except ValueError as exc:
            raise OllamaError(f"Invalid response body: {exc}") from exc
        models = data.get("models") if isinstance(data, dict) else None
        if not isinstance(models, list):
            return []
        return [ModelInfo.from_json(item) for item in models]
