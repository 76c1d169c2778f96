"""Shared fixtures: a sample actor module and a helper that compiles and imports one."""

import importlib
import itertools
import sys
import textwrap

import pytest

from actorgen.actor_loader import parse_file
from actorgen.generate_actors import format_source, generate_python


CALC_SOURCE = '''
from dataclasses import dataclass, field
from typing import List, NamedTuple

from actorgen.actor import Actor


class Stats(NamedTuple):
    count: int
    total: int


@dataclass
class Calculator:
    """Keeps a running total."""
    actor: Actor = field(default_factory=Actor, metadata={"async": "mult, notify"})
    total: int = 0
    calls: int = 0
    history: List[int] = field(default_factory=list)

    def init(self, start: int = 0):
        self.total = start

    # Add a and b to the running total
    def add(self, a: int, b: int) -> int:
        self.total += a + b
        self.calls += 1
        return self.total

    def mult(self, a: int, b: int) -> int:
        return a * b

    def record(self, value: int):
        self.history.append(value)

    def get_history(self) -> List[int]:
        return list(self.history)

    def split(self, n: int) -> tuple[int, int]:
        """Split n into halves."""
        return n // 2, n - n // 2

    def stats(self) -> Stats:
        return Stats(self.calls, self.total)

    def notify(self, value: int):
        self.history.append(value)

    def _helper(self) -> None:
        pass


class Unrelated:
    def add(self, a: int) -> int:
        return a
'''

_module_ids = itertools.count()


@pytest.fixture
def calc_source():
    return CALC_SOURCE


@pytest.fixture
def build_actors(tmp_path, monkeypatch):
    """
    Compile an actor source module and import the generated module.

    Returns a function taking source text and returning (source module,
    generated module). Every call uses fresh module names.
    """
    loaded = []

    def build(source, stem="calc"):
        name = f"{stem}_{next(_module_ids)}"
        src_path = tmp_path / f"{name}.py"
        src_path.write_text(textwrap.dedent(source))

        package = parse_file(src_path)
        out_path = tmp_path / f"{name}_actors.py"
        out_path.write_text(format_source(generate_python(package)))

        monkeypatch.syspath_prepend(str(tmp_path))
        importlib.invalidate_caches()
        loaded.extend([name, f"{name}_actors"])
        return importlib.import_module(name), importlib.import_module(f"{name}_actors")

    yield build

    for name in loaded:
        sys.modules.pop(name, None)
