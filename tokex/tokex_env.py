"""
The evaluation environment: variable bindings, the function/type registry
and the bridge from DSL names to annotation keys.
"""

import os
import re
import sys
from typing import Any, Dict, List, Optional

from tokex.tokex_datatypes import (
    Value, PrimitiveValue, TYPE_CLASS, TYPE_ANNOTATION_KEY, UnboundVariable, UnknownType,
)


def _dbg(*parts):
    if os.environ.get("TOKEX_DEBUG"):
        print("[DBG]", *parts, file=sys.stderr)


# `$name` references inside a string regex
_STRING_REGEX_VAR = re.compile(r"\$([A-Za-z_][A-Za-z0-9_]*)")


class Environment:
    """Represents one matching session's scope.

    Lookups walk the parent chain (self, then parent), so a per-session
    child can shadow variables while sharing the function registry, type
    descriptors and annotation keys registered on a long-lived parent.
    Only the parent's registries should be treated as shared state; the
    bindings of a session environment are not synchronized.
    """
    def __init__(self, parent: Optional['Environment'] = None, caching: Optional[bool] = None):
        # Variable name -> bound Value, raw Expression or raw payload.
        self.bindings: Dict[str, Any] = {}
        # Variable name -> compiled string regex.
        self.string_regexes: Dict[str, re.Pattern] = {}
        # Function name -> ValueFunction, GenericFunction or TypeDescriptor.
        self.functions: Dict[str, Any] = {}
        # DSL name -> opaque annotation key.
        self.annotation_keys: Dict[str, Any] = {}
        # Python class -> TypeDescriptor, for method dispatch and composite building.
        self.types_by_class: Dict[type, Any] = {}
        # Diagnostics recorded while evaluating (see record()).
        self.side_effects: List[Dict[str, Any]] = []
        self.parent = parent
        if caching is None:
            caching = parent.caching if parent is not None else True
        self.caching = caching

    def child(self) -> 'Environment':
        """Returns a fresh session environment that inherits from this one."""
        return Environment(parent=self)

    # --- Variables ---

    def find_owner(self, name: str) -> Optional['Environment']:
        if name in self.bindings:
            return self
        if self.parent is not None:
            return self.parent.find_owner(name)
        return None

    def bind(self, name: str, obj: Any):
        """Binds a variable; binding None removes it."""
        if not isinstance(name, str):
            raise TypeError(f"Variable name must be a str, not {type(name)}")
        if obj is None:
            self.unbind(name)
        else:
            self.bindings[name] = obj

    def unbind(self, name: str):
        self.bindings.pop(name, None)
        self.string_regexes.pop(name, None)

    def get(self, name: str, default: Any = None) -> Any:
        owner = self.find_owner(name)
        if owner is not None:
            return owner.bindings[name]
        return default

    def __contains__(self, name: Any) -> bool:
        return isinstance(name, str) and self.find_owner(name) is not None

    # --- String regexes ---

    def bind_string_regex(self, name: str, pattern: str):
        self.string_regexes[name] = re.compile(pattern)

    def get_string_regex(self, name: str) -> Optional[re.Pattern]:
        env = self
        while env is not None:
            if name in env.string_regexes:
                return env.string_regexes[name]
            env = env.parent
        return None

    def expand_string_regex(self, regex: str) -> str:
        """Replaces `$name` references with the bound string regexes (as groups)."""
        def _sub(m):
            bound = self.get_string_regex(m.group(1))
            if bound is None:
                return m.group(0)
            return f"(?:{bound.pattern})"
        return _STRING_REGEX_VAR.sub(_sub, regex)

    # --- Annotation keys ---

    def bind_annotation_key(self, name: str, key: Any):
        self.annotation_keys[name] = key

    def lookup_annotation_key(self, name: str) -> Optional[Any]:
        env = self
        while env is not None:
            if name in env.annotation_keys:
                return env.annotation_keys[name]
            env = env.parent
        # A variable explicitly bound to an ANNOKEY value also names a key.
        bound = self.get(name)
        if isinstance(bound, Value) and bound.get_type() == TYPE_ANNOTATION_KEY:
            return bound.get()
        return None

    # --- Functions and types ---

    def register_function(self, name: str, fn: Any):
        """Registers a ValueFunction, a GenericFunction (overload set) or a TypeDescriptor.

        A plain Python callable is wrapped in an unsigned NativeFunction and a
        list or tuple of functions becomes an overload set.
        """
        from tokex.tokex_dispatch import ValueFunction, NativeFunction, GenericFunction, TypeDescriptor
        if isinstance(fn, (list, tuple)):
            gf = GenericFunction(name)
            for m in fn:
                gf.add_method(m if isinstance(m, ValueFunction) else NativeFunction(m, name=name))
            fn = gf
        elif not isinstance(fn, (ValueFunction, GenericFunction, TypeDescriptor)) and callable(fn):
            fn = NativeFunction(fn, name=name)
        self.functions[name] = fn

    def add_function_overload(self, name: str, fn: Any):
        """Appends a candidate to name's overload set, promoting a single entry."""
        from tokex.tokex_dispatch import GenericFunction, NativeFunction, ValueFunction
        if not isinstance(fn, ValueFunction):
            fn = NativeFunction(fn, name=name)
        existing = self.functions.get(name)
        if isinstance(existing, GenericFunction):
            existing.add_method(fn)
            return
        gf = GenericFunction(name)
        if existing is not None:
            gf.add_method(existing)
        gf.add_method(fn)
        self.functions[name] = gf

    def lookup_function(self, name: str) -> Optional[Any]:
        env = self
        while env is not None:
            if name in env.functions:
                return env.functions[name]
            env = env.parent
        return None

    def register_type(self, name: str, descriptor: Any):
        """Installs a TypeDescriptor as a constructor function and a CLASS-valued variable."""
        self.functions[name] = descriptor
        self.bindings[name] = PrimitiveValue(TYPE_CLASS, descriptor)
        cls = getattr(descriptor, "factory", None)
        if isinstance(cls, type):
            self.types_by_class[cls] = descriptor

    def lookup_type_for(self, cls: type) -> Optional[Any]:
        """Finds the descriptor registered for cls or its nearest base class."""
        for klass in cls.__mro__:
            env = self
            while env is not None:
                if klass in env.types_by_class:
                    return env.types_by_class[klass]
                env = env.parent
        return None

    def lookup_type(self, type_name: str) -> Any:
        """Resolves a registered type name, else a dotted import path.

        Raises UnknownType when neither resolves.
        """
        from tokex.tokex_dispatch import TypeDescriptor
        registered = self.lookup_function(type_name)
        if isinstance(registered, TypeDescriptor):
            return registered
        obj = _import_dotted(type_name)
        if isinstance(obj, type):
            return self.lookup_type_for(obj) or TypeDescriptor.for_class(obj)
        return obj

    def lookup_annotation_key_by_name(self, key_name: str) -> Any:
        """Resolves an annotation key from its string name (registered keys first)."""
        env = self
        while env is not None:
            for name, key in env.annotation_keys.items():
                if name == key_name or key == key_name:
                    return key
            env = env.parent
        return _import_dotted(key_name)

    # --- Diagnostics ---

    def record(self, message: str, error: Optional[Exception] = None):
        """Records a soft failure as a stderr side effect."""
        _dbg(message)
        self.side_effects.append({'topics': ['stderr'], 'message': message, 'error': error})

    def unknown_variable(self, name: str, expr: Any = None):
        self.record(f"Unknown variable: {name}", UnboundVariable(name, expr))

    def __repr__(self) -> str:
        keys = ', '.join(self.bindings.keys())
        parent_id = f", parent=#{id(self.parent)}" if self.parent else ""
        return f"<Environment bindings=[{keys}]{parent_id}>"


def _import_dotted(path: Any) -> Any:
    import importlib
    if not isinstance(path, str) or '.' not in path:
        raise UnknownType(str(path))
    module_name, _, attr = path.rpartition('.')
    try:
        module = importlib.import_module(module_name)
    except ImportError as ex:
        raise UnknownType(path) from ex
    try:
        return getattr(module, attr)
    except AttributeError as ex:
        raise UnknownType(path) from ex
