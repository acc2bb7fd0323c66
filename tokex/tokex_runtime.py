# tokex runtime: built-in functions, expression runner and environment loading

import re
import collections.abc
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Literal, Optional

from tokex.tokex_datatypes import (
    Expression, Value, PrimitiveValue, RegexValue, TRUE, FALSE,
    TYPE_BOOLEAN, TYPE_NUMBER, TYPE_STRING, TYPE_LIST,
    ExpressionError, UnknownType,
    convert_value_to_boolean, create_value,
)
from tokex.tokex_env import Environment
from tokex.tokex_dispatch import NativeFunction, Sig, TypeDescriptor
from tokex.tokex_composite import CompositeValue
from tokex.tokex_printer import Printer
from tokex.tokex_serialize import deserialize

_NUM = (int, float)
_NONE = type(None)


def _payloads(items: Iterable[Any]) -> List[Any]:
    return [x.get() if isinstance(x, Value) else x for x in items]


def value_from_builtin(obj: Any) -> Value:
    """Wraps plain Python data (e.g. loaded from YAML) in typed Values."""
    if isinstance(obj, Value):
        return obj
    if isinstance(obj, bool):
        return TRUE if obj else FALSE
    if isinstance(obj, _NUM):
        return PrimitiveValue(TYPE_NUMBER, obj)
    if isinstance(obj, str):
        return PrimitiveValue(TYPE_STRING, obj)
    if isinstance(obj, (list, tuple)):
        return PrimitiveValue(TYPE_LIST, [value_from_builtin(x) for x in obj])
    if isinstance(obj, collections.abc.Mapping):
        return CompositeValue({str(k): value_from_builtin(v) for k, v in obj.items()}, True)
    return create_value(None, obj)


# ===================================================================
# 1. Built-in functions
# ===================================================================

class StdLib:
    """Contains Python implementations of the built-in functions."""

    def install(self, env: Environment) -> Environment:
        """Registers every built-in into env's function registry."""
        b = TYPE_BOOLEAN
        table = [
            # --- Logic ---
            ("And", NativeFunction(self._and, Sig(rest=None), raw=True)),
            ("Or", NativeFunction(self._or, Sig(rest=None), raw=True)),
            ("Not", NativeFunction(self._not, Sig(None), raw=True)),
            # --- Comparison ---
            ("GT", NativeFunction(self._gt, Sig(_NUM, _NUM), b)),
            ("GT", NativeFunction(self._gt, Sig(str, str), b)),
            ("GE", NativeFunction(self._ge, Sig(_NUM, _NUM), b)),
            ("GE", NativeFunction(self._ge, Sig(str, str), b)),
            ("LT", NativeFunction(self._lt, Sig(_NUM, _NUM), b)),
            ("LT", NativeFunction(self._lt, Sig(str, str), b)),
            ("LE", NativeFunction(self._le, Sig(_NUM, _NUM), b)),
            ("LE", NativeFunction(self._le, Sig(str, str), b)),
            ("EQ", NativeFunction(self._eq, Sig(None, None), b)),
            ("NE", NativeFunction(self._ne, Sig(None, None), b)),
            # --- Regex ---
            ("Match", NativeFunction(self._match, Sig(str, (str, re.Pattern)), raw=True)),
            ("Match", NativeFunction(lambda s, r: False, Sig(_NONE, None), b)),
            # --- Arithmetic ---
            ("Add", NativeFunction(self._add, Sig(_NUM, _NUM), TYPE_NUMBER)),
            ("Add", NativeFunction(self._add, Sig(str, str), TYPE_STRING)),
            ("Add", NativeFunction(self._add, Sig(list, list), TYPE_LIST)),
            ("Subtract", NativeFunction(self._sub, Sig(_NUM, _NUM), TYPE_NUMBER)),
            ("Multiply", NativeFunction(self._mul, Sig(_NUM, _NUM), TYPE_NUMBER)),
            ("Divide", NativeFunction(self._div, Sig(_NUM, _NUM), TYPE_NUMBER)),
            ("Mod", NativeFunction(self._mod, Sig(_NUM, _NUM), TYPE_NUMBER)),
            ("Negate", NativeFunction(self._negate, Sig(_NUM), TYPE_NUMBER)),
            ("Abs", NativeFunction(abs, Sig(_NUM), TYPE_NUMBER, name="Abs")),
            ("Max", NativeFunction(max, Sig(_NUM, rest=_NUM), TYPE_NUMBER, name="Max")),
            ("Min", NativeFunction(min, Sig(_NUM, rest=_NUM), TYPE_NUMBER, name="Min")),
            # --- Strings ---
            ("Concat", NativeFunction(self._concat, Sig(rest=None), TYPE_STRING)),
            ("Join", NativeFunction(self._join, Sig(list, str), TYPE_STRING)),
            ("Lowercase", NativeFunction(str.lower, Sig(str), TYPE_STRING, name="Lowercase")),
            ("Uppercase", NativeFunction(str.upper, Sig(str), TYPE_STRING, name="Uppercase")),
            ("Split", NativeFunction(self._split, Sig(str, str), TYPE_LIST)),
            ("Format", NativeFunction(self._format, Sig(str, rest=None), TYPE_STRING)),
            # --- Collections ---
            ("Size", NativeFunction(self._size, Sig((list, str, dict)), TYPE_NUMBER)),
            ("ListSelect", NativeFunction(self._list_select, Sig(list, int), raw=True)),
            ("ListSelect", NativeFunction(self._list_select, Sig(list, int, None), raw=True)),
            ("Select", NativeFunction(self._select, Sig(None, str), raw=True)),
            ("Select", NativeFunction(self._select, Sig(None, str, None), raw=True)),
        ]
        overloads: Dict[str, List[NativeFunction]] = {}
        for name, fn in table:
            fn.name = name
            overloads.setdefault(name, []).append(fn)
        for name, fns in overloads.items():
            env.register_function(name, fns)
        return env

    # --- Logic ---
    def _and(self, env, values):
        return TRUE if all(convert_value_to_boolean(v) for v in values) else FALSE

    def _or(self, env, values):
        return TRUE if any(convert_value_to_boolean(v) for v in values) else FALSE

    def _not(self, env, values):
        return FALSE if convert_value_to_boolean(values[0]) else TRUE

    # --- Comparison ---
    def _gt(self, a, b): return a > b
    def _ge(self, a, b): return a >= b
    def _lt(self, a, b): return a < b
    def _le(self, a, b): return a <= b
    def _eq(self, a, b): return a == b
    def _ne(self, a, b): return a != b

    # --- Regex ---
    def _match(self, env, values):
        string, regex = values[0].get(), values[1].get() if values[1] is not None else None
        if regex is None:
            return FALSE
        if isinstance(regex, str):
            regex = re.compile(env.expand_string_regex(regex))
        return TRUE if regex.fullmatch(string) else FALSE

    # --- Arithmetic ---
    def _add(self, a, b):
        if isinstance(a, list) or isinstance(b, list):
            return list(a or []) + list(b or [])
        return a + b

    def _sub(self, a, b): return a - b
    def _mul(self, a, b): return a * b
    def _div(self, a, b): return a / b
    def _mod(self, a, b): return a % b
    def _negate(self, x): return -x

    # --- Strings ---
    def _concat(self, *parts):
        return "".join(str(p) for p in parts if p is not None)

    def _join(self, items, separator):
        return separator.join(str(x) for x in _payloads(items or []))

    def _split(self, string, separator):
        return [PrimitiveValue(TYPE_STRING, s) for s in string.split(separator)]

    def _format(self, fmt, *args):
        return fmt % tuple(_payloads(args))

    # --- Collections ---
    def _size(self, collection):
        return len(collection) if collection is not None else None

    def _list_select(self, env, values):
        items = values[0].get() if values[0] is not None else None
        index = values[1].get()
        if items is None:
            return None
        if len(values) == 3:
            items[index] = values[2]
            return values[2]
        if not -len(items) <= index < len(items):
            return None
        return create_value(None, items[index])

    def _select(self, env, values):
        target, field_name = values[0], values[1].get()
        if target is None or target.get() is None:
            return None
        setting = len(values) == 3
        if isinstance(target, CompositeValue):
            if setting:
                target.set(field_name, values[2])
                return values[2]
            expr = target.get_expression(field_name)
            return expr.evaluate(env) if expr is not None else None
        obj = target.get()
        new_value = values[2].get() if setting and values[2] is not None else None
        if isinstance(obj, collections.abc.MutableMapping) and setting:
            obj[field_name] = new_value
            return values[2]
        if isinstance(obj, collections.abc.Mapping):
            return create_value(None, obj.get(field_name))
        if setting:
            setattr(obj, field_name, new_value)
            return values[2]
        return create_value(None, getattr(obj, field_name, None))


# ===================================================================
# 2. Environment configuration
# ===================================================================

_CONFIG_SECTIONS = ("options", "variables", "regexes", "annotation_keys", "types")


def load_environment(source: Any, fmt: Optional[str] = None, parent: Optional[Environment] = None,
                     install_stdlib: Optional[bool] = None) -> Environment:
    """Builds an Environment from a YAML/JSON document (or an already-parsed mapping).

    Sections: options, variables, regexes, annotation_keys, types. The
    standard library is installed unless a parent (which already has it)
    is given.
    """
    config = source if isinstance(source, collections.abc.Mapping) else deserialize(source, fmt=fmt)
    config = config or {}
    if not isinstance(config, collections.abc.Mapping):
        raise ValueError("Environment configuration must be a mapping")
    unknown = [k for k in config if k not in _CONFIG_SECTIONS]
    if unknown:
        raise ValueError(f"Unknown configuration sections: {', '.join(map(str, unknown))}")

    options = config.get("options") or {}
    env = Environment(parent=parent, caching=options.get("caching"))
    if install_stdlib is None:
        install_stdlib = parent is None
    if install_stdlib:
        StdLib().install(env)

    for name, type_path in (config.get("types") or {}).items():
        descriptor = env.lookup_type(type_path)
        if not isinstance(descriptor, TypeDescriptor):
            raise UnknownType(str(type_path))
        env.register_type(name, descriptor)
    for name, key in (config.get("annotation_keys") or {}).items():
        env.bind_annotation_key(name, key)
    for name, pattern in (config.get("regexes") or {}).items():
        env.bind(name, RegexValue(pattern))
        env.bind_string_regex(name, pattern)
    for name, value in (config.get("variables") or {}).items():
        env.bind(name, value_from_builtin(value))
    return env


# ===================================================================
# 3. Expression execution
# ===================================================================

@dataclass
class ExecutionResult:
    """The structured result of evaluating an expression."""
    status: Literal['success', 'error']
    value: Optional[Value] = None
    error_message: Optional[str] = None
    error: Optional[Exception] = None
    side_effects: List[Dict] = field(default_factory=list)

    @property
    def matched(self) -> bool:
        """True when evaluation succeeded with a truthy value."""
        return self.status == 'success' and bool(convert_value_to_boolean(self.value))

    def format_error(self) -> str:
        if self.status != 'error':
            return ""
        return str(self.error_message or "Unknown error")


class ExpressionRunner:
    """Evaluates expressions against an environment and reports structured results.

    Engine errors become error results instead of propagating, so a host
    can log and skip a failed match rather than abort a whole pass.
    """
    def __init__(self, env: Optional[Environment] = None, load_stdlib: bool = True):
        if env is None:
            env = Environment()
            if load_stdlib:
                StdLib().install(env)
        self.env = env

    def _format_runtime_error(self, e: Exception) -> str:
        match e:
            case ExpressionError():
                msg = f"{type(e).__name__}: {e}"
            case ZeroDivisionError():
                msg = f"ArithmeticError: {e}"
            case _:
                msg = f"InternalError: {e}"
        offender = getattr(e, 'expr', None)
        if offender is not None:
            msg = f"{msg}\nIn {Printer().pformat(offender)}"
        return msg

    def run(self, expr: Expression, *args) -> ExecutionResult:
        start = len(self.env.side_effects)
        try:
            value = expr.evaluate(self.env, *args)
        except Exception as e:
            return ExecutionResult(
                status='error',
                error_message=self._format_runtime_error(e),
                error=e,
                side_effects=self.env.side_effects[start:],
            )
        return ExecutionResult(status='success', value=value, side_effects=self.env.side_effects[start:])

    def run_all(self, expr: Expression, items: Iterable[Any]) -> List[ExecutionResult]:
        """Evaluates expr once per item, each with that item as the only argument."""
        return [self.run(expr, item) for item in items]
