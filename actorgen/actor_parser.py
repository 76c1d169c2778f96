"""
Parser and semantic resolver for actor source modules.

Recovers actor classes and their methods from Python source text:
- parse_source(): source text -> ast.Module (ParseError on bad syntax)
- TypeResolver: resolves annotations to names usable from another module
- parse_actors(): pass 1, finds classes composing the marker field
- parse_methods(): pass 2, binds methods to the actors found in pass 1
- check_generated_names(): pass 3, rejects collisions in the generated module

The two passes share an explicit table of ActorBuilders keyed by class
identifier. Actors must be discovered before their methods are visited.
"""

import ast
import builtins
import copy
import importlib.machinery
import importlib.util
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set, Tuple

from .actor_ast import ACTOR_INTERFACE, Actor, Method, Param, to_upper
from .config import DEFAULT_CONFIG, CompilerConfig

logger = logging.getLogger(__name__)


# =============================================================================
# Errors
# =============================================================================

class CompileError(Exception):
    """Base class for errors that abort compilation."""
    def __init__(self, message: str, line: int = 0, column: int = 0, filename: str = ""):
        self.message = message
        self.line = line
        self.column = column
        self.filename = filename
        loc = f"Line {line}, column {column}: " if line else ""
        prefix = f"{filename}: " if filename else ""
        super().__init__(f"{prefix}{loc}{message}")


class ParseError(CompileError):
    """Raised when the source text is not valid Python."""


class TypeCheckError(CompileError):
    """Raised when a name or type in an actor declaration cannot be resolved."""


def parse_source(source: str, filename: str = "<unknown>") -> ast.Module:
    """Parse source text into a syntax tree."""
    try:
        return ast.parse(source, filename=filename)
    except SyntaxError as e:
        raise ParseError(e.msg, e.lineno or 0, e.offset or 0, filename) from e
    except ValueError as e:
        # Null bytes in the source
        raise ParseError(str(e), 0, 0, filename) from e


# =============================================================================
# Name resolution
# =============================================================================

BUILTIN_NAMES = frozenset(dir(builtins))

TUPLE_TYPES = {"tuple", "typing.Tuple"}
NAMED_TUPLE_TYPES = {"typing.NamedTuple", "typing_extensions.NamedTuple"}
LITERAL_TYPES = {"typing.Literal", "typing_extensions.Literal"}
ANNOTATED_TYPES = {"typing.Annotated", "typing_extensions.Annotated"}
FIELD_FUNCS = {"dataclasses.field"}
DECORATORS_EXCLUDED = {"staticmethod", "classmethod", "property", "functools.cached_property"}

# Names generated wrappers and constructors bind locally
RESERVED_PARAMS = {"_ref", "_out", "_act"}


@dataclass
class Binding:
    """What a module-level name refers to, as seen from another module."""
    path: str              # dotted expression to use in generated code
    module: Optional[str]  # module to import for path to be valid
    plain: bool = False    # bound by a plain "import a.b" statement


class TypeResolver:
    """
    Resolves annotations in a source module to fully qualified spellings.

    Names imported from other modules become module-qualified
    (Decimal -> decimal.Decimal), names defined in the source module are
    qualified with its import path, builtins are kept as written.
    """

    def __init__(
        self,
        tree: ast.Module,
        module_name: str,
        filename: str = "",
        search_path: Optional[List[str]] = None,
    ):
        self.module_name = module_name
        self.filename = filename
        self.search_path = search_path or []
        self.bindings: Dict[str, Binding] = {}
        self.local_classes: Dict[str, ast.ClassDef] = {}
        self.plain_imports: Set[str] = set()
        self._collect(tree.body, guarded=False)

    # -------------------------------------------------------------------------
    # Name table
    # -------------------------------------------------------------------------

    def _collect(self, body: List[ast.stmt], guarded: bool):
        for stmt in body:
            if isinstance(stmt, ast.Import):
                for alias in stmt.names:
                    self._check_importable(alias.name, stmt, guarded)
                    if alias.asname:
                        self.bindings[alias.asname] = Binding(alias.name, alias.name)
                    else:
                        root = alias.name.split(".")[0]
                        self.bindings[root] = Binding(root, root, plain=True)
                        self.plain_imports.add(alias.name)
            elif isinstance(stmt, ast.ImportFrom):
                base = self._absolute_module(stmt)
                if stmt.level == 0:
                    self._check_importable(base, stmt, guarded)
                for alias in stmt.names:
                    if alias.name == "*":
                        logger.debug("Star import from %s, names from it cannot be resolved", base)
                        continue
                    self.bindings[alias.asname or alias.name] = Binding(f"{base}.{alias.name}", base)
            elif isinstance(stmt, ast.ClassDef):
                self.local_classes[stmt.name] = stmt
                self._bind_local(stmt.name)
            elif isinstance(stmt, (ast.FunctionDef, ast.AsyncFunctionDef)):
                self._bind_local(stmt.name)
            elif isinstance(stmt, ast.Assign):
                for target in stmt.targets:
                    if isinstance(target, ast.Name):
                        self._bind_local(target.id)
            elif isinstance(stmt, ast.AnnAssign) and isinstance(stmt.target, ast.Name):
                self._bind_local(stmt.target.id)
            elif isinstance(stmt, ast.If):
                self._collect(stmt.body, guarded)
                self._collect(stmt.orelse, guarded)
            elif isinstance(stmt, ast.Try):
                self._collect(stmt.body, guarded=True)
                for handler in stmt.handlers:
                    self._collect(handler.body, guarded=True)
                self._collect(stmt.orelse, guarded=True)
                self._collect(stmt.finalbody, guarded)

    def _bind_local(self, name: str):
        self.bindings[name] = Binding(f"{self.module_name}.{name}", self.module_name)

    def _absolute_module(self, stmt: ast.ImportFrom) -> str:
        if stmt.level == 0:
            return stmt.module or ""
        package = self.module_name.split(".")[:-1]
        if stmt.level > len(package):
            raise TypeCheckError(
                "attempted relative import beyond top-level package",
                stmt.lineno, stmt.col_offset + 1, self.filename,
            )
        parts = package[:len(package) - (stmt.level - 1)]
        if stmt.module:
            parts.append(stmt.module)
        return ".".join(parts)

    def _check_importable(self, name: str, stmt: ast.stmt, guarded: bool):
        if guarded or name == "__future__":
            return
        top = name.split(".")[0]
        try:
            spec = importlib.util.find_spec(top)
        except (ImportError, ValueError):
            spec = None
        if spec is None and self.search_path:
            # Modules next to the source file
            spec = importlib.machinery.PathFinder.find_spec(top, self.search_path)
        if spec is None:
            raise TypeCheckError(f"could not import {name}", stmt.lineno, stmt.col_offset + 1, self.filename)

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------

    def qualified_name(self, node: ast.expr) -> Optional[str]:
        """Qualified dotted name of a Name/Attribute chain, or None if it does not resolve."""
        if isinstance(node, ast.Constant) and isinstance(node.value, str):
            try:
                node = ast.parse(node.value, mode="eval").body
            except SyntaxError:
                return None
        parts = []
        while isinstance(node, ast.Attribute):
            parts.append(node.attr)
            node = node.value
        if not isinstance(node, ast.Name):
            return None
        binding = self.bindings.get(node.id)
        if binding is not None:
            root = binding.path
        elif node.id in BUILTIN_NAMES:
            root = node.id
        else:
            return None
        return ".".join([root] + list(reversed(parts)))

    def imported_module(self, dotted: str) -> str:
        """Longest plainly imported module a dotted reference lives in."""
        best = dotted.split(".")[0]
        for module in self.plain_imports:
            if (dotted == module or dotted.startswith(module + ".")) and len(module) > len(best):
                best = module
        return best

    def local_class(self, node: ast.expr) -> Optional[ast.ClassDef]:
        """The class defined in the source module that node refers to, if any."""
        qualified = self.qualified_name(node)
        prefix = f"{self.module_name}."
        if qualified is None or not qualified.startswith(prefix):
            return None
        return self.local_classes.get(qualified[len(prefix):])

    def is_named_tuple(self, node: ast.expr) -> Optional[ast.ClassDef]:
        """The local NamedTuple class node refers to, if any."""
        cls = self.local_class(node)
        if cls is None:
            return None
        for base in cls.bases:
            if self.qualified_name(base) in NAMED_TUPLE_TYPES:
                return cls
        return None

    # -------------------------------------------------------------------------
    # Rendering
    # -------------------------------------------------------------------------

    def resolve(self, node: ast.expr, imports: Set[str]) -> str:
        """
        Render an annotation for use in the generated module.

        Args:
            node: Annotation expression from the source tree
            imports: Set receiving the modules the rendering depends on

        Returns:
            The annotation with every name replaced by its qualified spelling
        """
        rendered = _Qualifier(self, imports).visit(copy.deepcopy(node))
        return ast.unparse(rendered)


class _Qualifier(ast.NodeTransformer):
    """Rewrites names in an annotation expression to their qualified spelling."""

    def __init__(self, resolver: TypeResolver, imports: Set[str]):
        self.resolver = resolver
        self.imports = imports

    def _error(self, message: str, node: ast.AST):
        raise TypeCheckError(
            message, getattr(node, "lineno", 0), getattr(node, "col_offset", -1) + 1,
            self.resolver.filename,
        )

    def _qualify(self, node: ast.expr) -> ast.expr:
        parts = []
        root = node
        while isinstance(root, ast.Attribute):
            parts.append(root.attr)
            root = root.value
        if not isinstance(root, ast.Name):
            return self.generic_visit(node)

        binding = self.resolver.bindings.get(root.id)
        if binding is None:
            if root.id in BUILTIN_NAMES:
                return node
            self._error(f"undefined: {root.id}", root)
        dotted = ".".join([binding.path] + list(reversed(parts)))
        if binding.plain:
            self.imports.add(self.resolver.imported_module(dotted))
        elif binding.module:
            self.imports.add(binding.module)
        return ast.parse(dotted, mode="eval").body

    def visit_Name(self, node: ast.Name) -> ast.expr:
        return self._qualify(node)

    def visit_Attribute(self, node: ast.Attribute) -> ast.expr:
        return self._qualify(node)

    def visit_Constant(self, node: ast.Constant) -> ast.expr:
        if isinstance(node.value, str):
            # Forward reference
            try:
                inner = ast.parse(node.value.strip(), mode="eval").body
            except SyntaxError:
                self._error(f"invalid type expression in string: {node.value!r}", node)
            return self.visit(inner)
        return node

    def visit_Subscript(self, node: ast.Subscript) -> ast.expr:
        qualified = self.resolver.qualified_name(node.value)
        node.value = self.visit(node.value)
        if qualified in LITERAL_TYPES:
            return node
        if qualified in ANNOTATED_TYPES and isinstance(node.slice, ast.Tuple) and node.slice.elts:
            node.slice.elts[0] = self.visit(node.slice.elts[0])
            return node
        node.slice = self.visit(node.slice)
        return node


# =============================================================================
# Actor discovery (pass 1)
# =============================================================================

@dataclass
class ActorBuilder:
    """An actor under construction, shared between the two passes."""
    actor: Actor
    methods: Dict[str, Method] = field(default_factory=dict)

    def add_method(self, method: Method):
        if method.name in self.methods:
            logger.debug("%s.%s redefined, keeping the later definition", self.actor.impl, method.name)
        self.methods[method.name] = method

    def build(self) -> Actor:
        self.actor.methods = list(self.methods.values())
        return self.actor


def exported_name(identifier: str) -> str:
    """Name a class is exposed under in generated code: _calculator -> Calculator."""
    return to_upper(identifier.lstrip("_"))


def parse_actors(
    tree: ast.Module,
    resolver: TypeResolver,
    actors: Dict[str, ActorBuilder],
    config: CompilerConfig = DEFAULT_CONFIG,
):
    """
    Find every top-level class that composes the marker field.

    Adds one ActorBuilder per actor class to actors, keyed by class name.
    """
    exported: Dict[str, str] = {b.actor.name: impl for impl, b in actors.items()}
    for stmt in tree.body:
        if not isinstance(stmt, ast.ClassDef):
            continue
        logger.debug("class: %s", stmt.name)
        for item in stmt.body:
            if not isinstance(item, ast.AnnAssign) or not isinstance(item.target, ast.Name):
                continue
            if resolver.qualified_name(item.annotation) != config.marker_type:
                continue

            logger.debug("%s is an actor", stmt.name)
            if stmt.name in actors:
                raise TypeCheckError(f"{stmt.name} redeclared", stmt.lineno, stmt.col_offset + 1, resolver.filename)
            name = exported_name(stmt.name)
            if not name:
                raise TypeCheckError(f"invalid actor name {stmt.name!r}", stmt.lineno, stmt.col_offset + 1, resolver.filename)
            if name in exported:
                raise TypeCheckError(
                    f"{stmt.name} and {exported[name]} both export actor {name}",
                    stmt.lineno, stmt.col_offset + 1, resolver.filename,
                )
            exported[name] = stmt.name

            act = Actor(
                impl=stmt.name,
                name=name,
                marker=item.target.id,
                doc=ast.get_docstring(stmt),
                line=stmt.lineno,
            )
            act.async_methods = _parse_async_tag(item.value, resolver, config)
            actors[stmt.name] = ActorBuilder(act)
            break


def _parse_async_tag(value: Optional[ast.expr], resolver: TypeResolver, config: CompilerConfig) -> Set[str]:
    """Read the async method list from field(metadata={...}) on the marker."""
    result: Set[str] = set()
    if not isinstance(value, ast.Call) or resolver.qualified_name(value.func) not in FIELD_FUNCS:
        return result

    for kw in value.keywords:
        if kw.arg != "metadata" or not isinstance(kw.value, ast.Dict):
            continue
        for key, val in zip(kw.value.keys, kw.value.values):
            if not isinstance(key, ast.Constant) or key.value != config.async_key:
                continue
            if not isinstance(val, ast.Constant) or not isinstance(val.value, str):
                raise TypeCheckError(
                    f"{config.async_key!r} metadata must be a string",
                    val.lineno, val.col_offset + 1, resolver.filename,
                )
            for entry in val.value.split(","):
                entry = entry.strip(" \t")
                if entry:
                    result.add(entry)
    return result


# =============================================================================
# Method binding (pass 2)
# =============================================================================

def parse_methods(
    tree: ast.Module,
    source: str,
    resolver: TypeResolver,
    imports: Set[str],
    actors: Dict[str, ActorBuilder],
    config: CompilerConfig = DEFAULT_CONFIG,
):
    """
    Visit every method in the module and attach the ones whose receiver is a
    known actor. Methods of other classes are skipped.
    """
    lines = source.splitlines()
    for stmt in tree.body:
        if not isinstance(stmt, ast.ClassDef):
            continue
        builder = actors.get(stmt.name)
        if builder is None:
            logger.debug("%s not found in actors map", stmt.name)
            continue

        for item in stmt.body:
            if not isinstance(item, (ast.FunctionDef, ast.AsyncFunctionDef)):
                continue
            logger.debug("Function: %s, receiver type: %s", item.name, stmt.name)
            if not _is_bound_method(item, resolver):
                logger.debug("%s is not an instance method, skipping", item.name)
                continue
            if item.name != config.init_method:
                if item.name.startswith("_"):
                    logger.debug("%s is private, skipping", item.name)
                    continue
                if item.name in config.excluded_methods:
                    logger.debug("%s is excluded", item.name)
                    continue
                if item.name in ACTOR_INTERFACE.reserved():
                    raise TypeCheckError(
                        f"method name {item.name!r} is reserved for the actor lifecycle",
                        item.lineno, item.col_offset + 1, resolver.filename,
                    )
            if isinstance(item, ast.AsyncFunctionDef):
                raise TypeCheckError(
                    f"coroutine method {item.name!r} cannot be an actor method",
                    item.lineno, item.col_offset + 1, resolver.filename,
                )

            method = _parse_method(item, builder.actor, lines, resolver, imports)
            if method.name == config.init_method:
                builder.actor.init = method
                continue
            for other in builder.methods.values():
                if other.name != method.name and other.exp_name == method.exp_name:
                    raise TypeCheckError(
                        f"methods {other.name!r} and {method.name!r} both map to {method.request}",
                        item.lineno, item.col_offset + 1, resolver.filename,
                    )
            builder.add_method(method)


def _is_bound_method(node: ast.FunctionDef, resolver: TypeResolver) -> bool:
    for dec in node.decorator_list:
        target = dec.func if isinstance(dec, ast.Call) else dec
        if resolver.qualified_name(target) in DECORATORS_EXCLUDED:
            return False
        # @prop.setter and friends
        if isinstance(target, ast.Attribute) and target.attr in ("setter", "getter", "deleter"):
            return False
    args = node.args
    return bool(args.posonlyargs or args.args)


def _parse_method(
    node: ast.FunctionDef,
    act: Actor,
    lines: List[str],
    resolver: TypeResolver,
    imports: Set[str],
) -> Method:
    method = Method(
        name=node.name,
        actor=act.name,
        is_async=act.is_async(node.name),
        doc=ast.get_docstring(node),
        comments=_leading_comments(node, lines),
        line=node.lineno,
    )

    logger.debug(" parameters:")
    method.params = _parse_params(node, resolver, imports)
    for p in method.params:
        logger.debug("  Name: %s, type: %s", p.name, p.type)

    if node.returns is not None:
        logger.debug(" results:")
        method.ret_type = resolver.resolve(node.returns, imports)
        method.ret_values, method.ret_group, method.ret_tuple = _parse_returns(node.returns, resolver, imports)
        for p in method.ret_values:
            logger.debug("  Name: %s, type: %s", p.name, p.type)

    if method.is_async and method.ret_values:
        done = "done" if method.named_returns else ""
        method.ret_values.append(Param(name=done, type="bool"))

    if not method.comments and not method.doc:
        logger.debug("Method %s has no comment", method.name)
    return method


def _parse_params(node: ast.FunctionDef, resolver: TypeResolver, imports: Set[str]) -> List[Param]:
    args = node.args
    if args.vararg is not None or args.kwarg is not None:
        raise TypeCheckError(
            f"{node.name}: *args and **kwargs are not supported in actor methods",
            node.lineno, node.col_offset + 1, resolver.filename,
        )

    positional = args.posonlyargs + args.args
    defaults: List[Optional[ast.expr]] = [None] * (len(positional) - len(args.defaults)) + list(args.defaults)

    params = []
    pairs: List[Tuple[ast.arg, Optional[ast.expr], bool]] = [
        (a, d, False) for a, d in zip(positional, defaults)
    ][1:]  # receiver
    pairs += [(a, d, True) for a, d in zip(args.kwonlyargs, args.kw_defaults)]

    for arg, default, kw_only in pairs:
        if arg.arg in RESERVED_PARAMS:
            raise TypeCheckError(
                f"{node.name}: parameter name {arg.arg!r} is reserved",
                arg.lineno, arg.col_offset + 1, resolver.filename,
            )
        if arg.annotation is not None:
            ptype = resolver.resolve(arg.annotation, imports)
        else:
            imports.add("typing")
            ptype = "typing.Any"
        params.append(Param(
            name=arg.arg,
            type=ptype,
            default=_literal_default(default, node, resolver),
            kw_only=kw_only,
        ))
    return params


def _literal_default(default: Optional[ast.expr], node: ast.FunctionDef, resolver: TypeResolver) -> Optional[str]:
    if default is None:
        return None
    try:
        ast.literal_eval(default)
    except (ValueError, TypeError, SyntaxError):
        raise TypeCheckError(
            f"{node.name}: only literal default values are supported",
            default.lineno, default.col_offset + 1, resolver.filename,
        ) from None
    return ast.unparse(default)


def _parse_returns(
    returns: ast.expr,
    resolver: TypeResolver,
    imports: Set[str],
) -> Tuple[List[Param], Optional[str], bool]:
    """
    Expand a return annotation into return values.

    Returns:
        (values, named group type or None, whether the method returns a tuple)
    """
    node = returns
    if isinstance(node, ast.Constant) and isinstance(node.value, str):
        try:
            node = ast.parse(node.value.strip(), mode="eval").body
        except SyntaxError:
            pass

    if isinstance(node, ast.Constant) and node.value is None:
        return [], None, False

    if isinstance(node, ast.Subscript) and resolver.qualified_name(node.value) in TUPLE_TYPES:
        elts = node.slice.elts if isinstance(node.slice, ast.Tuple) else [node.slice]
        if len(elts) == 2 and isinstance(elts[1], ast.Constant) and elts[1].value is Ellipsis:
            return [Param("", resolver.resolve(node, imports))], None, False
        return [Param("", resolver.resolve(e, imports)) for e in elts], None, True

    group = resolver.is_named_tuple(node)
    if group is not None:
        values = []
        for item in group.body:
            if isinstance(item, ast.AnnAssign) and isinstance(item.target, ast.Name):
                values.append(Param(item.target.id, resolver.resolve(item.annotation, imports)))
        return values, resolver.resolve(node, imports), False

    return [Param("", resolver.resolve(node, imports))], None, False


def _leading_comments(node: ast.FunctionDef, lines: List[str]) -> List[str]:
    """Comment lines directly above a def or its first decorator, top to bottom."""
    first = min([node.lineno] + [d.lineno for d in node.decorator_list])
    comments = []
    i = first - 2
    while i >= 0:
        text = lines[i].strip()
        if not text.startswith("#"):
            break
        comments.append(text)
        i -= 1
    comments.reverse()
    return comments


# =============================================================================
# Generated names (pass 3)
# =============================================================================

def generated_names(act: Actor) -> List[Tuple[str, int]]:
    """Module-level names the generator defines for one actor, with source lines."""
    names = [
        (act.name, act.line),
        (act.ref, act.line),
        (act.stop_request, act.line),
        (act.impl_class, act.line),
        (act.constructor, act.line),
    ]
    for method in act.methods:
        names.append((method.request, method.line))
        names.append((method.response, method.line))
    return names


def check_generated_names(actors: List[Actor], modules: Set[str], filename: str = ""):
    """
    Reject actors whose generated definitions would collide.

    Every generated module-level name must be unique across all actors and
    distinct from the modules the generated code imports. Parameters must
    not shadow either, since wrapper and constructor bodies refer to both.

    Args:
        actors: Actors in declaration order
        modules: Dotted modules the generated code imports
        filename: Name reported in errors
    """
    roots = {m.split(".")[0] for m in modules}
    owners: Dict[str, str] = {root: f"module {root}" for root in roots}
    for act in actors:
        for name, line in generated_names(act):
            if name in owners:
                raise TypeCheckError(
                    f"{act.impl} generates {name}, already defined by {owners[name]}",
                    line, 1, filename,
                )
            owners[name] = act.impl

    for act in actors:
        methods = act.methods + ([act.init] if act.init else [])
        for method in methods:
            for p in method.params:
                if p.name in owners:
                    raise TypeCheckError(
                        f"{act.impl}.{method.name}: parameter {p.name!r} shadows {p.name} in generated code",
                        method.line, 1, filename,
                    )
