"""Test fixtures: sample record types, wire bodies, and a scripted transport."""

from __future__ import annotations

import dataclasses
import enum
import json
import threading
from decimal import Decimal
from typing import Annotated, Any, Callable, Iterator, Mapping, Sequence, Union

from pydantic import BaseModel, Field

from pushql.errors import NetworkError
from pushql.execute.cancellation import CancellationToken
from pushql.schema.records import BigInt, Precision

# ---------------------------------------------------------------------------
# Record types
# ---------------------------------------------------------------------------


class Genre(str, enum.Enum):
    DRAMA = "DRAMA"
    SCIFI = "SCIFI"


class Movie(BaseModel):
    id: int
    title: str
    release_year: int
    rating: float | None = None


class Address(BaseModel):
    street: str
    number: int


class Customer(BaseModel):
    id: BigInt
    name: str
    address: Address
    tags: list[str] = []


class Payment(BaseModel):
    id: int
    amount: Annotated[Decimal, Precision(10, 2)]


class Tweet(BaseModel):
    id: BigInt
    message: str
    author: str = Field(alias="AUTHOR_NAME")


@dataclasses.dataclass
class Lead:
    actor_name: str
    movie_id: int


@dataclasses.dataclass
class Release:
    title: str
    genre: Genre
    scores: dict[str, int]


# ---------------------------------------------------------------------------
# Wire bodies
# ---------------------------------------------------------------------------

MOVIE_SCHEMA = "`ID` INTEGER, `TITLE` STRING, `RELEASE_YEAR` INTEGER, `RATING` DOUBLE"


def v1_body(
    schema: str,
    rows: Sequence[Sequence[Any]],
    query_id: str = "q1",
    final: str | None = None,
) -> list[str]:
    """Return a ``/query`` response split into one chunk per value."""
    values: list[Any] = [{"header": {"queryId": query_id, "schema": schema}}]
    values += [{"row": {"columns": list(r)}} for r in rows]
    if final is not None:
        values.append({"finalMessage": final})
    chunks = ["["]
    for i, value in enumerate(values):
        separator = "" if i == 0 else ",\n"
        chunks.append(separator + json.dumps(value))
    chunks.append("]\n")
    return chunks


def delimited_body(
    names: Sequence[str],
    types: Sequence[str],
    rows: Sequence[Sequence[Any]],
    query_id: str = "q1",
) -> list[str]:
    """Return a ``/query-stream`` response, one line per chunk."""
    header = {"queryId": query_id, "columnNames": list(names), "columnTypes": list(types)}
    return [json.dumps(header) + "\n"] + [json.dumps(list(r)) + "\n" for r in rows]


def rechunk(chunks: Sequence[str], size: int) -> list[str]:
    """Join ``chunks`` and split the text into pieces of ``size`` characters."""
    text = "".join(chunks)
    return [text[i : i + size] for i in range(0, len(text), size)]


def movie_rows(count: int, offset: int = 0) -> list[list[Any]]:
    return [[i, f"Movie {i}", 2000 + i, None] for i in range(offset, offset + count)]


# ---------------------------------------------------------------------------
# Scripted transport
# ---------------------------------------------------------------------------

#: A script step: a text chunk, an exception to raise, or a callable to run.
Step = Union[str, BaseException, Callable[[], Any]]


class ScriptedReader:
    """Plays back one scripted response body.

    Args:
        steps: Chunks, exceptions and callables, in order.
        hold_open: Keep the response open after the last step until closed,
            like an idle push query.
    """

    def __init__(self, steps: Sequence[Step], hold_open: bool = False) -> None:
        self._steps = list(steps)
        self._hold_open = hold_open
        self.closed = threading.Event()

    def iter_text(self) -> Iterator[str]:
        for step in self._steps:
            if self.closed.is_set():
                raise NetworkError("Stream interrupted: response closed.")
            if isinstance(step, BaseException):
                raise step
            if callable(step):
                step()
                continue
            yield step
        if self._hold_open:
            self.closed.wait(timeout=10)
            raise NetworkError("Stream interrupted: response closed.")

    def close(self) -> None:
        self.closed.set()


class ScriptedTransport:
    """In-memory transport; every ``open`` plays the next script.

    With a single script, every ``open`` replays it.
    """

    def __init__(self, *scripts: Sequence[Step], hold_open: bool = False) -> None:
        self._scripts = [list(s) for s in scripts]
        self._hold_open = hold_open
        self._lock = threading.Lock()
        self.requests: list[tuple[str, Any, dict[str, str]]] = []
        self.readers: list[ScriptedReader] = []

    def open(
        self,
        url: str,
        body: bytes,
        headers: Mapping[str, str],
        cancellation: CancellationToken,
    ) -> ScriptedReader:
        with self._lock:
            self.requests.append((url, json.loads(body), dict(headers)))
            script = self._scripts.pop(0) if len(self._scripts) > 1 else self._scripts[0]
            reader = ScriptedReader(script, self._hold_open)
            self.readers.append(reader)
        cancellation.register(reader.close)
        return reader
