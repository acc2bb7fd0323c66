"""
Function dispatch: signatures, overload sets, type descriptors and the
argument-compatibility rule used to pick among them.
"""
import dataclasses
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, TYPE_CHECKING

from tokex.tokex_datatypes import (
    Value, PrimitiveValue, create_value,
    UnknownFunction, NoMatchingOverload, UnsupportedFunctionValue, ConstructionFailure,
    UnknownMethod, InvocationFailure,
)

if TYPE_CHECKING:
    from tokex.tokex_env import Environment

# Parameter types that never accept a missing (None) argument and accept
# only their exact runtime type, e.g. an int parameter rejects a bool.
PRIMITIVE_TYPES = (int, float, bool, str)


def _is_primitive(target) -> bool:
    if isinstance(target, tuple):
        return bool(target) and all(t in PRIMITIVE_TYPES for t in target)
    return target in PRIMITIVE_TYPES


def _accepts(target, arg_type: Optional[type]) -> bool:
    if target is None or target is object:
        return True
    if _is_primitive(target):
        if arg_type is None:
            return False
        targets = target if isinstance(target, tuple) else (target,)
        return arg_type in targets
    if arg_type is None:
        return True
    return issubclass(arg_type, target)


def is_arg_types_compatible(arg_types: Sequence[Optional[type]], target_types: Sequence[Any]) -> bool:
    """True when every argument type can be passed to the matching target type.

    ``None`` in arg_types stands for a missing argument, which only
    non-primitive targets accept.
    """
    if len(arg_types) != len(target_types):
        return False
    return all(_accepts(t, a) for a, t in zip(arg_types, target_types))


def payload_types(values: Sequence[Optional[Value]]) -> Tuple[List[Any], List[Optional[type]]]:
    objs = [v.get() if v is not None else None for v in values]
    types = [type(o) if o is not None else None for o in objs]
    return objs, types


class Sig:
    """Declared parameter types of a native function.

    Each entry is a Python type, a tuple of types, a type-tag string matched
    against the argument Value's get_type(), or None for "anything". ``rest``
    is the type accepted by any trailing variadic arguments.
    """
    _NO_REST = object()

    def __init__(self, *positional: Any, rest: Any = _NO_REST):
        self.positional = list(positional)
        self.rest = rest

    @property
    def variadic(self) -> bool:
        return self.rest is not Sig._NO_REST

    def check(self, values: Sequence[Optional[Value]]) -> bool:
        n = len(self.positional)
        if len(values) < n or (len(values) > n and not self.variadic):
            return False
        targets = list(self.positional) + [self.rest] * (len(values) - n)
        tag_slots = [i for i, t in enumerate(targets) if isinstance(t, str)]
        for i in tag_slots:
            v = values[i]
            if v is None or v.get_type() != targets[i]:
                return False
        _, types = payload_types(values)
        plain = [t for i, t in enumerate(targets) if i not in tag_slots]
        plain_types = [a for i, a in enumerate(types) if i not in tag_slots]
        return is_arg_types_compatible(plain_types, plain)

    def __repr__(self) -> str:
        from tokex.tokex_printer import Printer
        return Printer().pformat(self)

    def __eq__(self, other):
        return isinstance(other, Sig) and self.positional == other.positional and self.rest == other.rest


# =================================================================
# Functions
# =================================================================

class ValueFunction:
    """A function from a list of evaluated Values to a single Value."""
    name: Optional[str] = None

    def check_args(self, values: List[Optional[Value]]) -> bool:
        return True

    def apply(self, env: 'Environment', values: List[Optional[Value]]) -> Optional[Value]:
        raise NotImplementedError


class NativeFunction(ValueFunction):
    """Wraps a Python callable with an optional declared signature.

    By default the callable receives the unwrapped payloads and its result is
    wrapped with ``result_type``; with ``raw=True`` it receives
    ``(env, values)`` and must return a Value itself.
    """
    def __init__(self, fn: Callable, sig: Optional[Sig] = None, result_type: Optional[str] = None,
                 name: Optional[str] = None, raw: bool = False):
        self.fn = fn
        self.sig = sig
        self.result_type = result_type
        self.name = name or getattr(fn, "__name__", None)
        self.raw = raw

    def check_args(self, values: List[Optional[Value]]) -> bool:
        return self.sig is None or self.sig.check(values)

    def apply(self, env: 'Environment', values: List[Optional[Value]]) -> Optional[Value]:
        if self.raw:
            return self.fn(env, values)
        objs, _ = payload_types(values)
        res = self.fn(*objs)
        return create_value(self.result_type, res)

    def __repr__(self) -> str:
        from tokex.tokex_printer import Printer
        return Printer().pformat(self)


def native(*positional: Any, rest: Any = Sig._NO_REST, result: Optional[str] = None, raw: bool = False):
    """Decorator declaring a Python function's signature for registration."""
    def deco(fn):
        return NativeFunction(fn, Sig(*positional, rest=rest), result_type=result, raw=raw)
    return deco


class GenericFunction:
    """An ordered overload set; the first candidate accepting the arguments wins."""
    def __init__(self, name: Optional[str] = None):
        self.name = name
        self.methods: List[ValueFunction] = []

    def add_method(self, fn: ValueFunction):
        self.methods.append(fn)

    def __repr__(self) -> str:
        return f"<GenericFunction name={self.name!r} methods={len(self.methods)}>"


class TypeDescriptor:
    """Registration-time description of a constructible host type.

    factory:      zero-argument constructor (usually the class itself)
    properties:   names settable from composite fields; derived from a
                  dataclass, ``__slots__`` or annotations when omitted
    constructors: candidate constructors tried in order, each a ValueFunction
    create:       optional ``create(*objs)`` tried first with positional values;
                  returning None means "not applicable"
    methods:      name -> list of NativeFunction taking the receiver first
    build_composite: optional ``build(value, composite)`` used when a composite
                  names a value of this type in its ``type`` field
    """
    def __init__(self, name: str, factory: Callable, properties: Optional[Sequence[str]] = None,
                 constructors: Optional[Sequence[ValueFunction]] = None, create: Optional[Callable] = None,
                 methods: Optional[Dict[str, Sequence[ValueFunction]]] = None,
                 build_composite: Optional[Callable] = None):
        self.name = name
        self.factory = factory
        self.properties = tuple(properties) if properties is not None else _default_properties(factory)
        if constructors is None:
            constructors = [NativeFunction(factory, name=name)]
        self.constructors = list(constructors)
        self.create = create
        self.methods: Dict[str, List[ValueFunction]] = {k: list(v) for k, v in (methods or {}).items()}
        self.build_composite = build_composite

    @classmethod
    def for_class(cls, klass: type) -> 'TypeDescriptor':
        return cls(klass.__name__, klass)

    def new_instance(self) -> Any:
        try:
            return self.factory()
        except Exception as ex:
            raise ConstructionFailure(self.name) from ex

    def has_property(self, obj: Any, prop: str) -> bool:
        if self.properties is not None:
            return prop in self.properties
        return hasattr(obj, prop)

    def set_property(self, obj: Any, prop: str, value: Any):
        setattr(obj, prop, value)

    def __repr__(self) -> str:
        return f"<TypeDescriptor {self.name}>"


def _default_properties(factory) -> Optional[Tuple[str, ...]]:
    if not isinstance(factory, type):
        return None
    if dataclasses.is_dataclass(factory):
        return tuple(f.name for f in dataclasses.fields(factory))
    slots = getattr(factory, "__slots__", None)
    if slots:
        return (slots,) if isinstance(slots, str) else tuple(slots)
    names: List[str] = []
    for klass in reversed(factory.__mro__):
        names.extend(n for n in getattr(klass, "__annotations__", {}) if n not in names)
    return tuple(names) if names else None


# =================================================================
# Resolution
# =================================================================

@dataclasses.dataclass
class DispatchTarget:
    """What a function name resolved to: 'single', 'overloaded' or 'type'."""
    kind: str
    target: Any


class Dispatcher:
    """Resolves function names against an Environment and invokes them."""
    def __init__(self, env: 'Environment'):
        self.env = env

    def resolve(self, name: str, *args, expr: Any = None) -> DispatchTarget:
        # A variable bound to a function shadows the registry.
        func_value = self.env.get(name)
        if func_value is None or not _is_function_like(func_value):
            func_value = self.env.lookup_function(name)
        if func_value is None:
            raise UnknownFunction(name, expr)
        if isinstance(func_value, Value):
            v = func_value.evaluate(self.env, *args)
            func_value = v.get() if v is not None else None
        if isinstance(func_value, GenericFunction):
            return DispatchTarget('overloaded', func_value)
        if isinstance(func_value, (list, tuple)):
            return DispatchTarget('overloaded', _as_overload_set(name, func_value))
        if isinstance(func_value, TypeDescriptor):
            return DispatchTarget('type', func_value)
        if isinstance(func_value, ValueFunction):
            return DispatchTarget('single', func_value)
        raise UnsupportedFunctionValue(func_value, expr)

    def call_function(self, name: str, values: List[Optional[Value]], *args, expr: Any = None) -> Optional[Value]:
        target = self.resolve(name, *args, expr=expr)
        if target.kind == 'single':
            return target.target.apply(self.env, values)
        if target.kind == 'overloaded':
            fn = select_overload(name, target.target.methods, values, expr=expr)
            return fn.apply(self.env, values)
        return self.construct(target.target, name, values, expr=expr)

    def construct(self, descriptor: TypeDescriptor, name: str, values: List[Optional[Value]],
                  expr: Any = None) -> Value:
        """Builds a new host object from evaluated arguments."""
        objs, types = payload_types(values)
        params_not_null = all(t is not None for t in types)
        if params_not_null and descriptor.create is not None:
            try:
                obj = descriptor.create(*objs)
            except Exception as ex:
                raise ConstructionFailure(descriptor.name, expr) from ex
            if obj is not None:
                return PrimitiveValue(name, obj)
        for ctor in descriptor.constructors:
            if ctor.check_args(values):
                try:
                    res = ctor.apply(self.env, values)
                except Exception as ex:
                    raise ConstructionFailure(descriptor.name, expr) from ex
                obj = res.get() if isinstance(res, Value) else res
                return PrimitiveValue(name, obj)
        raise ConstructionFailure(descriptor.name, expr)

    def call_method(self, receiver: Any, name: str, values: List[Optional[Value]], expr: Any = None) -> Value:
        """Invokes a method on a host object, preferring registered candidates."""
        descriptor = self.env.lookup_type_for(type(receiver))
        if descriptor is not None and name in descriptor.methods:
            receiver_value = create_value(None, receiver)
            call_values = [receiver_value] + list(values)
            for m in descriptor.methods[name]:
                if m.check_args(call_values):
                    try:
                        res = m.apply(self.env, call_values)
                    except Exception as ex:
                        raise InvocationFailure(
                            f"Cannot evaluate method {name} on object {receiver!r}", expr) from ex
                    return PrimitiveValue(name, res.get() if res is not None else None)
            raise UnknownMethod(name, type(receiver), expr)
        method = getattr(receiver, name, None)
        if method is None or not callable(method) or name.startswith('_'):
            raise UnknownMethod(name, type(receiver), expr)
        objs, _ = payload_types(values)
        try:
            res = method(*objs)
        except Exception as ex:
            raise InvocationFailure(f"Cannot evaluate method {name} on object {receiver!r}", expr) from ex
        return PrimitiveValue(name, res)


def select_overload(name: str, candidates: Sequence[ValueFunction], values: List[Optional[Value]],
                    expr: Any = None) -> ValueFunction:
    """Returns the first candidate, in registration order, accepting values."""
    for fn in candidates:
        if fn.check_args(values):
            return fn
    raise NoMatchingOverload(name, values, list(candidates), expr)


def _is_function_like(obj: Any) -> bool:
    if isinstance(obj, Value):
        return _is_function_like(obj.get())
    return isinstance(obj, (ValueFunction, GenericFunction, TypeDescriptor))


def _as_overload_set(name: str, fns) -> GenericFunction:
    gf = GenericFunction(name)
    for fn in fns:
        gf.add_method(fn)
    return gf
