"""
Defines the core data types for the tokex expression runtime.

This module provides the type tags, the tag set attached to expressions,
the abstract expression protocol, the primitive value classes and the
error taxonomy that the interpreter, dispatcher and composite converter
share.
"""

from abc import ABC, abstractmethod
from typing import List, Dict, Any, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from tokex.tokex_env import Environment

# =================================================================
# Type tags
# =================================================================

TYPE_VAR = "VAR"
TYPE_FUNCTION = "FUNCTION"
TYPE_REGEX = "REGEX"
TYPE_STRING_REGEX = "STRING_REGEX"
TYPE_TOKEN_REGEX = "TOKEN_REGEX"
TYPE_REGEXMATCHVAR = "REGEXMATCHVAR"
TYPE_STRING = "STRING"
TYPE_NUMBER = "NUMBER"
TYPE_COMPOSITE = "COMPOSITE"
TYPE_LIST = "LIST"
TYPE_SET = "SET"
TYPE_ANNOTATION_KEY = "ANNOKEY"
TYPE_CLASS = "CLASS"
TYPE_TOKENS = "TOKENS"
TYPE_BOOLEAN = "BOOLEAN"
TYPE_MATCHED_GROUP_INFO = "MATCHED_GROUP_INFO"


# =================================================================
# Errors
# =================================================================

class ExpressionError(Exception):
    """Base class for every error raised by the evaluation engine."""
    def __init__(self, message: str, expr: Any = None):
        super().__init__(message)
        self.expr = expr


class UnboundVariable(ExpressionError, KeyError):
    """A variable had no binding. Recorded as a diagnostic, never raised by evaluation."""
    def __init__(self, name: str, expr: Any = None):
        super().__init__(f"Unknown variable: {name}", expr)
        self.name = name

    def __str__(self):
        return self.args[0]


class UnknownFunction(ExpressionError, NameError):
    def __init__(self, name: str, expr: Any = None):
        super().__init__(f"Unknown function {name}", expr)
        self.name = name


class NoMatchingOverload(ExpressionError, TypeError):
    """No candidate of an overload set accepted the evaluated arguments."""
    def __init__(self, name: str, args: List[Any], candidates: List[Any], expr: Any = None):
        from tokex.tokex_printer import Printer
        p = Printer()
        lines = [
            f"Cannot find function matching args: {name}",
            "Args are: " + ",".join(p.pformat(a) for a in args),
        ]
        if candidates:
            lines.append("Options are:")
            lines.extend(p.pformat(c) for c in candidates)
        else:
            lines.append("No options")
        super().__init__("\n".join(lines), expr)
        self.name = name
        self.call_args = args
        self.candidates = candidates


class UnsupportedFunctionValue(ExpressionError, TypeError):
    def __init__(self, value: Any, expr: Any = None):
        super().__init__(f"Unsupported function value {value!r}", expr)
        self.value = value


class ConstructionFailure(ExpressionError, RuntimeError):
    def __init__(self, type_name: str, expr: Any = None):
        super().__init__(f"Cannot instantiate {type_name}", expr)
        self.type_name = type_name


class UnknownCompositeField(ExpressionError, AttributeError):
    def __init__(self, field: str, type_name: str, expr: Any = None):
        super().__init__(f"Unknown field {field} for type {type_name}", expr)
        self.field = field
        self.type_name = type_name


class UnknownType(ExpressionError, LookupError):
    def __init__(self, type_name: str, expr: Any = None):
        super().__init__(f"Unknown class {type_name}", expr)
        self.type_name = type_name


class InvalidGroupReference(ExpressionError, TypeError):
    pass


class UnknownMethod(ExpressionError, AttributeError):
    def __init__(self, name: str, receiver_type: type, expr: Any = None):
        super().__init__(f"Cannot find method {name} on object of class {receiver_type.__name__}", expr)
        self.name = name
        self.receiver_type = receiver_type


class InvocationFailure(ExpressionError, RuntimeError):
    pass


class InvalidCompositeValue(ExpressionError, ValueError):
    pass


# =================================================================
# Tags
# =================================================================

class Tags:
    """Free-form tags attached to an expression, each optionally carrying a Value."""
    def __init__(self, *tags: str):
        self.tags: Dict[str, Optional['Value']] = {}
        for tag in tags:
            self.tags[tag] = None

    def get_tags(self):
        return set(self.tags.keys())

    def has_tag(self, tag: str) -> bool:
        return tag in self.tags

    def add_tag(self, tag: str, value: Optional['Value'] = None):
        self.tags[tag] = value

    def remove_tag(self, tag: str):
        self.tags.pop(tag, None)

    def get_tag(self, tag: str) -> Optional['Value']:
        return self.tags.get(tag)

    def __repr__(self) -> str:
        return f"Tags({', '.join(self.tags)})"

    def __eq__(self, other):
        return isinstance(other, Tags) and self.tags == other.tags


def _make_tags(tags) -> Optional[Tags]:
    return Tags(*tags) if tags else None


# =================================================================
# Abstract Base Classes
# =================================================================

class Expression(ABC):
    """An unevaluated term. Values are expressions whose has_value() is true."""

    @abstractmethod
    def get_type(self) -> Optional[str]: ...

    @abstractmethod
    def get_tags(self) -> Optional[Tags]: ...

    @abstractmethod
    def set_tags(self, tags: Optional[Tags]): ...

    @abstractmethod
    def simplify(self, env: 'Environment') -> 'Expression': ...

    @abstractmethod
    def has_value(self) -> bool: ...

    @abstractmethod
    def evaluate(self, env: 'Environment', *args) -> Optional['Value']: ...

    def __repr__(self) -> str:
        from tokex.tokex_printer import Printer
        return Printer().pformat(self)


class Value(Expression):
    """An evaluated, typed result. Subclasses expose the native payload via get()."""

    @abstractmethod
    def get(self) -> Any: ...


class TypedExpression(Expression):
    """An expression with a type name and optional tags."""
    def __init__(self, typename: Optional[str], *tags: str):
        self.typename = typename
        self.tags: Optional[Tags] = _make_tags(tags)

    def get_tags(self) -> Optional[Tags]:
        return self.tags

    def set_tags(self, tags: Optional[Tags]):
        self.tags = tags

    def get_type(self) -> Optional[str]:
        return self.typename

    def simplify(self, env: 'Environment') -> Expression:
        return self

    def has_value(self) -> bool:
        return False


class WrappedExpression(Expression):
    """An expression that delegates everything to an inner expression."""
    expr: Expression

    def get_tags(self) -> Optional[Tags]:
        return self.expr.get_tags()

    def set_tags(self, tags: Optional[Tags]):
        self.expr.set_tags(tags)

    def get_type(self) -> Optional[str]:
        return self.expr.get_type()

    def simplify(self, env: 'Environment') -> Expression:
        return self.expr.simplify(env)

    def has_value(self) -> bool:
        return self.expr.has_value()

    def evaluate(self, env: 'Environment', *args) -> Optional['Value']:
        return self.expr.evaluate(env, *args)


class SimpleExpression(TypedExpression):
    """An expression represented by a single native object."""
    def __init__(self, typename: Optional[str], value: Any, *tags: str):
        super().__init__(typename, *tags)
        self.value = value

    def get(self) -> Any:
        return self.value


class SimpleCachedExpression(SimpleExpression):
    """A simple expression that remembers the Value of its last argument-free evaluation.

    Caching is bypassed whenever positional arguments are supplied, when the
    environment disables caching, or when the last result was not yet fully
    concrete (``disable_caching``). The cached slot is not synchronized; trees
    shared between threads need ``Environment(caching=False)`` or a clone per
    thread.
    """
    def __init__(self, typename: Optional[str], value: Any, *tags: str):
        super().__init__(typename, value, *tags)
        self.evaluated: Optional[Value] = None
        self.disable_caching = False

    def do_evaluation(self, env: 'Environment', *args) -> Optional[Value]:
        raise NotImplementedError(f"Cannot evaluate type: {self.typename}")

    def evaluate(self, env: 'Environment', *args) -> Optional[Value]:
        if args:
            return self.do_evaluation(env, *args)
        if not getattr(env, "caching", True):
            return self.do_evaluation(env)
        if self.evaluated is None or self.disable_caching:
            self.evaluated = self.do_evaluation(env)
        return self.evaluated

    def has_value(self) -> bool:
        return self.evaluated is not None


class SimpleValue(TypedExpression, Value):
    """A Value backed directly by a native object."""
    def __init__(self, typename: Optional[str], value: Any, *tags: str):
        super().__init__(typename, *tags)
        self.value = value

    def get(self) -> Any:
        return self.value

    def evaluate(self, env: 'Environment', *args) -> Value:
        return self

    def has_value(self) -> bool:
        return True

    def __eq__(self, other):
        if not isinstance(other, SimpleValue):
            return NotImplemented
        return self.typename == other.typename and self.value == other.value

    def __hash__(self):
        try:
            return hash((self.typename, self.value))
        except TypeError:
            return hash((self.typename, id(self.value)))


class PrimitiveValue(SimpleValue):
    """A Value directly represented by a Python object."""
    pass


class RegexValue(SimpleValue):
    """A string holding a regular expression."""
    def __init__(self, regex: str, *tags: str):
        super().__init__(TYPE_REGEX, regex, *tags)


TRUE = PrimitiveValue(TYPE_BOOLEAN, True)
FALSE = PrimitiveValue(TYPE_BOOLEAN, False)
NIL = PrimitiveValue("NIL", None)


# =================================================================
# Conversion helpers
# =================================================================

def convert_value_to_boolean(v: Optional[Value], keep_null: bool = False) -> Optional[bool]:
    """Coerces a Value to a bool.

    A missing value or a ``None`` payload is ``False`` (``None`` with
    ``keep_null``); a bool passes through; anything else is true unless it
    is the integer ``0``.
    """
    if v is not None:
        obj = v.get()
        if obj is not None:
            if isinstance(obj, bool):
                return obj
            return not (type(obj) is int and obj == 0)
    return None if keep_null else False


def convert_value_to_boolean_value(v: Optional[Value], keep_null: bool = False) -> Optional[Value]:
    if v is not None:
        if isinstance(v.get(), bool):
            return v
        res = convert_value_to_boolean(v, keep_null)
        if res is None:
            return None
        return PrimitiveValue(TYPE_BOOLEAN, res)
    return None if keep_null else FALSE


def create_value(typename: Optional[str], value: Any, *tags: str) -> Value:
    if isinstance(value, Value):
        return value
    return PrimitiveValue(typename, value, *tags)


def as_value(env: 'Environment', v: Any) -> Value:
    return v if isinstance(v, Value) else create_value(None, v)


def as_expression(env: 'Environment', v: Any) -> Expression:
    return v if isinstance(v, Expression) else create_value(None, v)


def as_object(env: 'Environment', v: Any) -> Any:
    if isinstance(v, Expression):
        res = v.evaluate(env)
        return res.get() if res is not None else None
    return v
