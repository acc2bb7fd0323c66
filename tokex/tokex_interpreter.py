"""
The expression variants of the tokex engine and their simplify/evaluate
algorithms.

Evaluation takes an Environment and optional positional arguments
(typically the annotated token being matched, or a SequenceMatchResult).
Missing variables and calls on missing receivers yield no value (None);
every other failure raises an ExpressionError subclass.
"""
import copy
import re
import collections.abc
from typing import Any, List, Optional, Sequence, Tuple, Union

from tokex.tokex_datatypes import (
    Expression, Value, TypedExpression, WrappedExpression, SimpleExpression, PrimitiveValue,
    TYPE_VAR, TYPE_FUNCTION, TYPE_REGEX, TYPE_REGEXMATCHVAR, TYPE_STRING, TYPE_NUMBER,
    TYPE_LIST, TYPE_TOKENS, TYPE_BOOLEAN, TYPE_MATCHED_GROUP_INFO,
    InvalidGroupReference, as_expression, create_value,
    convert_value_to_boolean, convert_value_to_boolean_value,
)
from tokex.tokex_dispatch import Dispatcher
from tokex.tokex_env import Environment
from tokex.tokex_match import SequenceMatchResult

_DIGITS = re.compile(r"\d+")


def _is_annotation_map(obj: Any) -> bool:
    return isinstance(obj, collections.abc.Mapping)


def _annotation_key_for(env: Environment, name: str, args: tuple) -> Optional[Any]:
    """The annotation key addressed by name when args is a single annotated token."""
    if len(args) == 1 and _is_annotation_map(args[0]):
        return env.lookup_annotation_key(name)
    return None


def _copy_tags(src: Expression, dst: Expression) -> Expression:
    if src.get_tags() is not None:
        dst.set_tags(src.get_tags())
    return dst


# =================================================================
# Variables
# =================================================================

class VarAssignmentExpression(TypedExpression):
    """Assigns the value of an expression to a variable (or an annotation slot)."""
    def __init__(self, var_name: str, value_expr: Expression, bind_as_value: bool):
        super().__init__("VAR_ASSIGNMENT")
        self.var_name = var_name
        self.value_expr = value_expr
        self.bind_as_value = bind_as_value

    def evaluate(self, env: Environment, *args) -> Optional[Value]:
        value = self.value_expr.evaluate(env, *args)
        key = _annotation_key_for(env, self.var_name, args)
        if key is not None:
            args[0][key] = value.get() if value is not None else None
            return value
        if self.bind_as_value:
            env.bind(self.var_name, value)
        else:
            env.bind(self.var_name, value.get() if value is not None else None)
            if value is not None and value.get_type() == TYPE_REGEX:
                pattern = value.get()
                if isinstance(pattern, re.Pattern):
                    pattern = pattern.pattern
                if isinstance(pattern, str):
                    env.bind_string_regex(self.var_name, pattern)
        return value


class VarExpression(SimpleExpression):
    """A variable reference.

    With a single annotated-token argument, a name that maps to an
    annotation key reads that slot of the token instead of the
    environment binding.
    """
    def __init__(self, var_name: str, *tags: str):
        super().__init__(TYPE_VAR, var_name, *tags)

    def evaluate(self, env: Environment, *args) -> Optional[Value]:
        var_name = self.value
        key = _annotation_key_for(env, var_name, args)
        if key is not None:
            return create_value(var_name, args[0].get(key))
        obj = env.get(var_name)
        v = as_expression(env, obj).evaluate(env, *args) if obj is not None else None
        if v is None:
            env.unknown_variable(var_name, self)
        return v

    def assign(self, expr: Expression) -> VarAssignmentExpression:
        return VarAssignmentExpression(self.value, expr, True)


class RegexMatchVarExpression(SimpleExpression):
    """Refers to a captured group ($1, $name) of the match result passed as the argument.

    Against a SequenceMatchResult the captured elements are returned as
    TOKENS; against a plain string match (re.Match) the captured substring
    is returned as STRING, which requires a numeric group id.
    """
    def __init__(self, group: Union[int, str], *tags: str):
        super().__init__(TYPE_REGEXMATCHVAR, group, *tags)

    @classmethod
    def value_of(cls, group: str) -> 'RegexMatchVarExpression':
        if _DIGITS.fullmatch(group):
            return cls(int(group))
        return cls(group)

    def evaluate(self, env: Environment, *args) -> Optional[Value]:
        if not args:
            return None
        mr = args[0]
        ref = self.value
        if isinstance(mr, SequenceMatchResult):
            return PrimitiveValue(TYPE_TOKENS, mr.group_nodes(ref))
        if isinstance(mr, re.Match):
            if isinstance(ref, int):
                return PrimitiveValue(TYPE_STRING, mr.group(ref))
            raise InvalidGroupReference("String match result must be referred to by group id", self)
        raise InvalidGroupReference(f"Cannot resolve group {ref!r} against {type(mr).__name__}", self)

    def assign(self, expr: Expression) -> VarAssignmentExpression:
        return VarAssignmentExpression(str(self.value), expr, False)


class RegexMatchResultVarExpression(SimpleExpression):
    """Like RegexMatchVarExpression, but yields the full MatchedGroupInfo."""
    def __init__(self, group: Union[int, str], *tags: str):
        super().__init__(TYPE_REGEXMATCHVAR, group, *tags)

    @classmethod
    def value_of(cls, group: str) -> 'RegexMatchResultVarExpression':
        if _DIGITS.fullmatch(group):
            return cls(int(group))
        return cls(group)

    def evaluate(self, env: Environment, *args) -> Optional[Value]:
        if not args:
            return None
        mr = args[0]
        if isinstance(mr, SequenceMatchResult):
            return PrimitiveValue(TYPE_MATCHED_GROUP_INFO, mr.group_info(self.value))
        raise InvalidGroupReference("Group info requires a sequence match result", self)


# =================================================================
# Calls
# =================================================================

def _simplify_all(env: Environment, exprs: Sequence[Expression]) -> Tuple[List[Expression], bool]:
    simplified = [e.simplify(env) for e in exprs]
    return simplified, all(e.has_value() for e in simplified)


class FunctionCallExpression(TypedExpression):
    def __init__(self, function: str, params: List[Expression], *tags: str):
        super().__init__(TYPE_FUNCTION, *tags)
        self.function = function
        self.params = list(params)

    def simplify(self, env: Environment) -> Expression:
        params, all_have_value = _simplify_all(env, self.params)
        res = _copy_tags(self, FunctionCallExpression(self.function, params))
        if all_have_value:
            v = res.evaluate(env)
            if v is not None:
                return v
        return res

    def evaluate(self, env: Environment, *args) -> Optional[Value]:
        values = [p.evaluate(env, *args) for p in self.params]
        return Dispatcher(env).call_function(self.function, values, *args, expr=self)


class AssignableFunctionCallExpression(FunctionCallExpression):
    """A function call whose assignment form passes the new value as an extra argument."""
    def assign(self, expr: Expression) -> FunctionCallExpression:
        res = FunctionCallExpression(self.function, self.params + [expr])
        res.set_tags(self.tags)
        return res


class IndexedExpression(AssignableFunctionCallExpression):
    def __init__(self, expr: Expression, index: int):
        super().__init__("ListSelect", [expr, PrimitiveValue(TYPE_NUMBER, index)])


class FieldExpression(AssignableFunctionCallExpression):
    def __init__(self, expr: Expression, field: Union[str, Expression]):
        if not isinstance(field, Expression):
            field = PrimitiveValue(TYPE_STRING, field)
        super().__init__("Select", [expr, field])


class OrExpression(FunctionCallExpression):
    def __init__(self, children: List[Expression]):
        super().__init__("Or", children)


class AndExpression(FunctionCallExpression):
    def __init__(self, children: List[Expression]):
        super().__init__("And", children)


class NotExpression(FunctionCallExpression):
    def __init__(self, expr: Expression):
        super().__init__("Not", [expr])


class MethodCallExpression(TypedExpression):
    """Calls a method on the object a receiver expression evaluates to."""
    def __init__(self, function: str, obj: Expression, params: List[Expression], *tags: str):
        super().__init__(TYPE_FUNCTION, *tags)
        self.function = function
        self.object = obj
        self.params = list(params)

    def simplify(self, env: Environment) -> Expression:
        params, all_have_value = _simplify_all(env, self.params)
        obj = self.object.simplify(env)
        res = _copy_tags(self, MethodCallExpression(self.function, obj, params))
        if all_have_value and obj.has_value():
            v = res.evaluate(env)
            if v is not None:
                return v
        return res

    def evaluate(self, env: Environment, *args) -> Optional[Value]:
        receiver = self.object.evaluate(env, *args)
        if receiver is None or receiver.get() is None:
            return None
        values = [p.evaluate(env, *args) for p in self.params]
        return Dispatcher(env).call_method(receiver.get(), self.function, values, expr=self)


# =================================================================
# Conditionals
# =================================================================

class IfExpression(TypedExpression):
    def __init__(self, cond: Expression, true_expr: Expression, false_expr: Expression):
        super().__init__("If")
        self.cond_expr = cond
        self.true_expr = true_expr
        self.false_expr = false_expr

    def simplify(self, env: Environment) -> Expression:
        cond = self.cond_expr.simplify(env)
        if cond.has_value():
            branch = self.true_expr if convert_value_to_boolean(cond.evaluate(env)) else self.false_expr
            return branch.simplify(env)
        return _copy_tags(self, IfExpression(cond, self.true_expr.simplify(env), self.false_expr.simplify(env)))

    def evaluate(self, env: Environment, *args) -> Optional[Value]:
        cond = convert_value_to_boolean(self.cond_expr.evaluate(env, *args))
        branch = self.true_expr if cond else self.false_expr
        return branch.evaluate(env, *args)


class CaseExpression(WrappedExpression):
    """Ordered (condition, result) pairs with a default, folded into a chain of Ifs."""
    def __init__(self, conds: List[Tuple[Expression, Expression]], else_expr: Expression):
        if not conds:
            raise ValueError("No conditions!")
        expr = else_expr
        for cond, result in reversed(conds):
            expr = IfExpression(cond, result, expr)
        self.expr = expr


_COMPARISON_FUNCTIONS = {
    ">=": "GE",
    "<=": "LE",
    ">": "GT",
    "<": "LT",
    "==": "EQ",
    "!=": "NE",
    "=~": "Match",
}


class ConditionalExpression(WrappedExpression):
    """A boolean-valued wrapper; binary() builds one from a comparison operator."""
    def __init__(self, expr: Expression):
        self.expr = expr

    @classmethod
    def binary(cls, op: str, expr1: Expression, expr2: Expression) -> 'ConditionalExpression':
        if op == "!~":
            return cls(NotExpression(FunctionCallExpression("Match", [expr1, expr2])))
        if op not in _COMPARISON_FUNCTIONS:
            raise ValueError(f"Unknown comparison operator {op!r}")
        return cls(FunctionCallExpression(_COMPARISON_FUNCTIONS[op], [expr1, expr2]))

    def get_type(self) -> str:
        return TYPE_BOOLEAN

    def simplify(self, env: Environment) -> Expression:
        return self

    def evaluate(self, env: Environment, *args) -> Optional[Value]:
        return convert_value_to_boolean_value(self.expr.evaluate(env, *args), False)


# =================================================================
# Lists
# =================================================================

class ListExpression(TypedExpression):
    def __init__(self, typename: str = TYPE_LIST, exprs: Optional[List[Expression]] = None, *tags: str):
        super().__init__(typename, *tags)
        self.exprs: List[Expression] = list(exprs) if exprs else []

    def add(self, expr: Expression):
        self.exprs.append(expr)

    def add_all(self, exprs: Optional[List[Expression]]):
        if exprs:
            self.exprs.extend(exprs)

    def simplify(self, env: Environment) -> Expression:
        exprs, all_have_value = _simplify_all(env, self.exprs)
        res = _copy_tags(self, ListExpression(self.typename, exprs))
        return res.evaluate(env) if all_have_value else res

    def evaluate(self, env: Environment, *args) -> Value:
        return PrimitiveValue(self.typename, [e.evaluate(env, *args) for e in self.exprs])


def clone_expression(expr: Expression) -> Expression:
    """Deep copy of an expression tree, cached values included, for use on another thread."""
    return copy.deepcopy(expr)
