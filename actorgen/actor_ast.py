"""
Signature model for actor declarations.

Built once by the loader from a parsed source module and read by the
generator. Nothing here has behaviour beyond derived names.
"""

import re
from dataclasses import dataclass, field
from typing import List, Optional, Set


def to_upper(s: str) -> str:
    """Upper-case the first character of s."""
    if not s:
        return s
    return s[0].upper() + s[1:]


def camel_case(name: str) -> str:
    """Convert a method or class identifier to CamelCase: get_total -> GetTotal."""
    parts = [p for p in name.split("_") if p]
    return "".join(to_upper(p) for p in parts)


def snake_case(name: str) -> str:
    """Convert a CamelCase identifier to snake_case: HTTPCounter -> http_counter."""
    s = re.sub(r"([A-Z]+)([A-Z][a-z])", r"\1_\2", name)
    s = re.sub(r"([a-z0-9])([A-Z])", r"\1_\2", s)
    return s.lower()


# =============================================================================
# Lifecycle names
# =============================================================================

@dataclass(frozen=True)
class ActorInterface:
    """
    Names of the generated lifecycle members.

    Kept in one place so the generator never spells them as literals.
    """
    new: str = "new"
    init: str = "init"
    start: str = "start"
    stop: str = "stop"
    ref: str = "ref"
    stopped: str = "stopped"

    def reserved(self) -> Set[str]:
        """Member names user methods may not take."""
        return {self.start, self.stop, self.ref, self.stopped}


ACTOR_INTERFACE = ActorInterface()


# =============================================================================
# Signatures
# =============================================================================

@dataclass
class Param:
    """A parameter or return value. Unnamed return values have an empty name."""
    name: str
    type: str
    default: Optional[str] = None
    kw_only: bool = False


@dataclass
class Method:
    """An actor method as declared in the source module."""
    name: str
    actor: str
    params: List[Param] = field(default_factory=list)
    ret_values: List[Param] = field(default_factory=list)
    is_async: bool = False
    comments: List[str] = field(default_factory=list)
    doc: Optional[str] = None
    ret_type: Optional[str] = None
    ret_group: Optional[str] = None
    ret_tuple: bool = False
    line: int = 0

    @property
    def exp_name(self) -> str:
        """Capitalised spelling used in generated type names."""
        return camel_case(self.name)

    @property
    def lname(self) -> str:
        """Internal spelling the worker dispatches to."""
        return self.name

    @property
    def request(self) -> str:
        return f"{self.actor}{self.exp_name}Request"

    @property
    def response(self) -> str:
        return f"{self.actor}{self.exp_name}Response"

    @property
    def ret_vals(self) -> List[Param]:
        """Return values visible to the caller, without the completion flag."""
        if self.is_async and self.ret_values:
            return self.ret_values[:-1]
        return self.ret_values

    @property
    def has_response(self) -> bool:
        """Whether the worker sends a response envelope back."""
        if self.is_async and not self.ret_vals:
            return False
        return True

    @property
    def named_returns(self) -> bool:
        return any(p.name for p in self.ret_values)


@dataclass
class Actor:
    """An actor class and the methods bound to it."""
    impl: str
    name: str
    marker: str = "actor"
    methods: List[Method] = field(default_factory=list)
    init: Optional[Method] = None
    doc: Optional[str] = None
    line: int = 0
    async_methods: Set[str] = field(default_factory=set)

    def is_async(self, method: str) -> bool:
        return method in self.async_methods

    @property
    def ref(self) -> str:
        return f"{self.name}Ref"

    @property
    def stop_request(self) -> str:
        return f"{self.name}StopRequest"

    @property
    def impl_class(self) -> str:
        return f"_{self.name}Impl"

    @property
    def constructor(self) -> str:
        return f"{ACTOR_INTERFACE.new}_{snake_case(self.name)}"


@dataclass
class Package:
    """Everything the generator needs for one source module."""
    name: str
    imports: Set[str] = field(default_factory=set)
    actors: List[Actor] = field(default_factory=list)
    interface: ActorInterface = ACTOR_INTERFACE
    runtime: str = "actorgen.actor"
    source: str = ""

    def actor(self, name: str) -> Optional[Actor]:
        """Look up an actor by exported name."""
        for act in self.actors:
            if act.name == name:
                return act
        return None
