"""
Generate actor scaffolding from a parsed Package.

For every actor class the generated module contains:
- <Name>: Protocol with start(), ref() and stop()
- <Name>Ref: the caller-facing handle with one wrapper per method
- <Name>StopRequest and one request/response dataclass per method
- _<Name>Impl: subclass of the source class running the dispatch loop
- new_<name>(): constructor taking the init() parameters

Output is a pure function of the Package: the same model always yields
the same text.
"""

import ast
import logging
import re
from typing import List, Optional

from .actor_ast import Actor, Method, Package, Param

logger = logging.getLogger(__name__)

INDENT = "    "

# Modules every generated file uses
BASE_IMPORTS = ("dataclasses", "queue", "threading", "typing")


class FormatError(Exception):
    """Raised when generated text is not valid Python."""
    def __init__(self, message: str, line: int = 0, column: int = 0):
        self.line = line
        self.column = column
        super().__init__(f"Line {line}, column {column}: {message}" if line else message)


# =============================================================================
# Rendering helpers
# =============================================================================

def param_list(params: List[Param]) -> str:
    """Render a parameter list for a def, without the receiver."""
    parts = []
    star = False
    for p in params:
        if p.kw_only and not star:
            parts.append("*")
            star = True
        text = f"{p.name}: {p.type}"
        if p.default is not None:
            text += f" = {p.default}"
        parts.append(text)
    return ", ".join(parts)


def call_args(params: List[Param], prefix: str = "") -> str:
    """Render call arguments; keyword-only parameters are passed by name."""
    parts = []
    for p in params:
        if p.kw_only:
            parts.append(f"{p.name}={prefix}{p.name}")
        else:
            parts.append(f"{prefix}{p.name}")
    return ", ".join(parts)


def docstring_lines(doc: Optional[str], indent: str) -> List[str]:
    """Render a docstring as source lines at the given indentation."""
    if not doc:
        return []
    if '"""' in doc or "\\" in doc or doc.endswith('"'):
        return [f"{indent}{doc!r}"]
    doc_lines = doc.splitlines()
    if len(doc_lines) == 1:
        return [f'{indent}"""{doc}"""']
    lines = [f'{indent}"""{doc_lines[0]}']
    for line in doc_lines[1:]:
        lines.append(f"{indent}{line}" if line else "")
    lines.append(f'{indent}"""')
    return lines


def values_tuple(names: List[str]) -> str:
    """Render names as a tuple expression."""
    if len(names) == 1:
        return f"({names[0]},)"
    return f"({', '.join(names)})"


# =============================================================================
# Per-actor generation
# =============================================================================

class ActorGenerator:
    """Generate the complete scaffolding for one actor."""

    def __init__(self, act: Actor, package: Package):
        self.actor = act
        self.package = package
        self.iface = package.interface
        self.runtime = package.runtime
        self.base = f"{package.name}.{act.impl}"

    def generate(self) -> str:
        """Generate all definitions for this actor."""
        logger.debug("Generating actor %s (%s)", self.actor.name, self.base)

        sections = [
            self._generate_interface(),
            self._generate_ref(),
            self._generate_stop_request(),
        ]
        for method in self.actor.methods:
            sections.append(self._generate_request(method))
            sections.append(self._generate_response(method))
        sections.append(self._generate_constructor())
        sections.append(self._generate_impl())

        lines = ["# ============================================================================="]
        lines.append(f"# {self.actor.name}")
        lines.append("# =============================================================================")
        lines.append("")
        lines.append("\n\n\n".join(sections))
        return "\n".join(lines)

    # -------------------------------------------------------------------------
    # Types
    # -------------------------------------------------------------------------

    def _generate_interface(self) -> str:
        name = self.actor.name
        lines = [f"class {name}(typing.Protocol):"]
        lines.append(f'    """Lifecycle of a {name} actor."""')
        lines.append("")
        lines.append(f"    def {self.iface.start}(self) -> {name}: ...")
        lines.append("")
        lines.append(f"    def {self.iface.ref}(self) -> {self.actor.ref}: ...")
        lines.append("")
        lines.append(f"    def {self.iface.stop}(self) -> None: ...")
        return "\n".join(lines)

    def _generate_stop_request(self) -> str:
        lines = ["@dataclasses.dataclass"]
        lines.append(f"class {self.actor.stop_request}:")
        lines.append("    pass")
        return "\n".join(lines)

    def _generate_request(self, method: Method) -> str:
        lines = ["@dataclasses.dataclass"]
        lines.append(f"class {method.request}:")
        lines.append(f"    _ref: {self.actor.ref}")
        lines.append(f"    _out: typing.Optional[{self.runtime}.Future]")
        for p in method.params:
            lines.append(f"    {p.name}: {p.type}")
        return "\n".join(lines)

    def _generate_response(self, method: Method) -> str:
        lines = ["@dataclasses.dataclass"]
        lines.append(f"class {method.response}:")
        if not method.ret_vals:
            lines.append("    pass")
        for i, ret in enumerate(method.ret_vals):
            lines.append(f"    r{i}: {ret.type}")
        return "\n".join(lines)

    # -------------------------------------------------------------------------
    # Reference
    # -------------------------------------------------------------------------

    def _generate_ref(self) -> str:
        act = self.actor
        lines = [f"class {act.ref}:"]
        lines.append(f'    """Caller-facing handle on a {act.name} actor."""')
        lines.append("")
        lines.append(f"    def __init__(self, state: {self.runtime}.Actor):")
        lines.append("        self._in = state.mailbox")
        lines.append("        self._state = state")
        lines.append("")
        lines.append(f"    def {self.iface.stopped}(self) -> bool:")
        lines.append("        return self._state.is_stopping()")

        for method in act.methods:
            lines.append("")
            lines.extend(self._generate_wrapper(method))

        return "\n".join(lines)

    def _generate_wrapper(self, method: Method) -> List[str]:
        """Generate the caller-side method on the reference."""
        lines = [f"    {c}" for c in method.comments]
        params = param_list(method.params)
        signature = f"self, {params}" if params else "self"
        rt = self.runtime

        if method.is_async:
            if method.ret_vals:
                poll_type = f"typing.Tuple[{', '.join(p.type for p in method.ret_values)}]"
                ret_type = f"typing.Callable[[], {poll_type}]"
            else:
                ret_type = "None"
        else:
            ret_type = method.ret_type or "None"

        lines.append(f"    def {method.name}({signature}) -> {ret_type}:")
        lines.extend(docstring_lines(method.doc, INDENT * 2))
        lines.append(f"        if self.{self.iface.stopped}():")
        lines.append(f'            raise {rt}.ActorStopped("{self.actor.name} stopped")')

        args = call_args(method.params)
        args = f", {args}" if args else ""

        if not method.has_response:
            # Fire and forget
            lines.append(f"        self._in.put({method.request}(self, None{args}))")
            return lines

        lines.append(f"        _out = {rt}.Future()")
        lines.append(f"        self._in.put({method.request}(self, _out{args}))")

        fields = [f"result.r{i}" for i in range(len(method.ret_vals))]
        if method.is_async:
            none_values = ", ".join(["None"] * len(method.ret_vals))
            lines.append("")
            lines.append(f"        def poll() -> {poll_type}:")
            lines.append("            result, ok = _out.try_take()")
            lines.append("            if not ok:")
            lines.append(f"                return {none_values}, False")
            lines.append(f"            if not isinstance(result, {method.response}):")
            lines.append(f'                raise {rt}.ActorLogicError("Wrong type of result message received")')
            lines.append(f"            return {', '.join(fields)}, True")
            lines.append("")
            lines.append("        return poll")
            return lines

        lines.append("        result = _out.take()")
        lines.append(f"        if not isinstance(result, {method.response}):")
        lines.append(f'            raise {rt}.ActorLogicError("Wrong type of result message received")')
        if method.ret_group:
            lines.append(f"        return {method.ret_group}({', '.join(fields)})")
        elif method.ret_tuple:
            lines.append(f"        return {values_tuple(fields)}")
        elif fields:
            lines.append(f"        return {fields[0]}")
        return lines

    # -------------------------------------------------------------------------
    # Constructor and implementation
    # -------------------------------------------------------------------------

    def _generate_constructor(self) -> str:
        act = self.actor
        init = act.init
        params = param_list(init.params) if init else ""

        lines = [f"def {act.constructor}({params}) -> {act.name}:"]
        lines.append(f'    """Create a {act.name} actor. Call {self.iface.start}() to run it."""')
        lines.append(f"    _act = {act.impl_class}()")
        lines.append(f"    _act.{act.marker} = {self.runtime}.Actor()")
        if init:
            lines.append(f"    _act.{init.name}({call_args(init.params)})")
        lines.append("    return _act")
        return "\n".join(lines)

    def _generate_impl(self) -> str:
        act = self.actor
        marker = f"self.{act.marker}"
        lines = [f"class {act.impl_class}({self.base}):"]
        lines.append(f'    """{act.impl} with a mailbox and a worker thread."""')
        lines.append("")
        lines.append("    _worker: typing.Optional[threading.Thread] = None")
        lines.append("")
        lines.append(f"    def {self.iface.start}(self) -> {act.name}:")
        lines.append("        if self._worker is None:")
        lines.append(f'            self._worker = threading.Thread(target=self._receive, name="{act.name}", daemon=True)')
        lines.append("            self._worker.start()")
        lines.append("        return self")
        lines.append("")
        lines.append(f"    def {self.iface.ref}(self) -> {act.ref}:")
        lines.append(f"        return {act.ref}({marker})")
        lines.append("")
        lines.append(f"    def {self.iface.stop}(self) -> None:")
        lines.append(f"        {marker}.stop_requested.set()")
        lines.append(f"        {marker}.mailbox.post({act.stop_request}())")
        lines.append("")
        lines.extend(self._generate_dispatch())
        return "\n".join(lines)

    def _generate_dispatch(self) -> List[str]:
        """
        Generate the worker loop that runs one message at a time.

        When the loop ends, normally or through an exception, the actor is
        marked stopped and every caller still waiting on it is failed.
        """
        act = self.actor
        rt = self.runtime
        lines = ["    def _receive(self) -> None:"]
        lines.append(f"        state = self.{act.marker}")
        lines.append("        mailbox = state.mailbox")
        lines.append("        stopped = False")
        lines.append("        msg = None")
        lines.append("        try:")
        lines.append("            while True:")
        lines.append("                if not stopped:")
        lines.append("                    msg = mailbox.get()")
        lines.append("                else:")
        lines.append("                    try:")
        lines.append("                        msg = mailbox.get_nowait()")
        lines.append("                    except queue.Empty:")
        lines.append(f'                        {rt}.log.info("No more messages. Exiting")')
        lines.append("                        return")

        prefix = "if"
        for method in act.methods:
            lines.append(f"                {prefix} isinstance(msg, {method.request}):")
            prefix = "elif"

            values = [f"v{i}" for i in range(len(method.ret_vals))]
            call = f"self.{method.lname}({call_args(method.params, 'msg.')})"
            if not values:
                lines.append(f"                    {call}")
            elif method.ret_tuple and len(values) == 1:
                lines.append(f"                    (v0,) = {call}")
            else:
                lines.append(f"                    {', '.join(values)} = {call}")
            if method.has_response:
                lines.append(f"                    msg._out.put({method.response}({', '.join(values)}))")

        lines.append(f"                {prefix} isinstance(msg, {act.stop_request}):")
        lines.append("                    state.stopped.set()")
        lines.append("                    stopped = True")
        lines.append(f'                    {rt}.log.info("Actor stopped")')
        lines.append("                else:")
        lines.append(f"                    raise {rt}.ActorLogicError(")
        lines.append('                        f"Wrong type of request message received: {type(msg).__name__}"')
        lines.append("                    )")
        lines.append("                msg = None")
        lines.append("        except Exception as exc:")
        lines.append(f'            {rt}.log.error("{act.name} worker failed: %r", exc)')
        lines.append(f"            {rt}.fail_request(msg, exc)")
        lines.append("            raise")
        lines.append("        finally:")
        lines.append(f'            gone = {rt}.ActorStopped("{act.name} stopped")')
        lines.append("            state.stop_requested.set()")
        lines.append("            state.stopped.set()")
        lines.append(f"            {rt}.fail_request(msg, gone)")
        lines.append("            for pending in mailbox.close():")
        lines.append(f"                {rt}.fail_request(pending, gone)")
        return lines


# =============================================================================
# Module generation
# =============================================================================

def generate_imports(package: Package) -> str:
    """Import block: generated-code modules first, then the package's imports."""
    lines = ["from __future__ import annotations", ""]
    for imp in BASE_IMPORTS:
        lines.append(f"import {imp}")
    lines.append("")
    for imp in sorted(package.imports - set(BASE_IMPORTS)):
        lines.append(f"import {imp}")
    return "\n".join(lines)


def generate_python(package: Package) -> str:
    """Generate the actor module for a package."""
    lines = ['"""']
    lines.append(f"Actors for {package.name}.")
    lines.append("")
    if package.source:
        lines.append(f"GENERATED FROM {package.source}")
    else:
        lines.append("GENERATED CODE")
    lines.append('"""')
    lines.append("")
    lines.append(generate_imports(package))

    for act in package.actors:
        lines.append("")
        lines.append("")
        lines.append(ActorGenerator(act, package).generate())

    lines.append("")
    return "\n".join(lines)


# =============================================================================
# Formatting
# =============================================================================

_BLANK_RUN = re.compile(r"\n{4,}")


def format_source(text: str) -> str:
    """
    Check that generated text is valid Python and normalise whitespace.

    Raises:
        FormatError: if the text does not parse
    """
    try:
        ast.parse(text)
    except SyntaxError as e:
        raise FormatError(e.msg, e.lineno or 0, e.offset or 0) from e

    lines = [line.rstrip() for line in text.splitlines()]
    result = "\n".join(lines).strip("\n")
    result = _BLANK_RUN.sub("\n\n\n", result)
    return result + "\n"
