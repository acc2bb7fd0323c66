import pytest
from tokex.tokex_datatypes import (
    Tags, PrimitiveValue, RegexValue, SimpleCachedExpression, NIL, TRUE, FALSE,
    TYPE_NUMBER, TYPE_STRING, TYPE_BOOLEAN, TYPE_REGEX,
    convert_value_to_boolean, convert_value_to_boolean_value,
    create_value, as_value, as_expression, as_object,
    NoMatchingOverload, UnknownFunction, UnboundVariable, ExpressionError,
)
from tokex.tokex_env import Environment
from tokex.tokex_dispatch import NativeFunction, Sig


# --- Tags ---

def test_tags_with_values():
    tags = Tags("a", "b")
    assert tags.get_tags() == {"a", "b"}
    assert tags.has_tag("a")
    assert tags.get_tag("a") is None

    tags.add_tag("c", TRUE)
    assert tags.get_tag("c") is TRUE
    tags.remove_tag("a")
    assert not tags.has_tag("a")
    tags.remove_tag("missing")  # no-op


def test_values_carry_tags():
    v = PrimitiveValue(TYPE_STRING, "x", "quoted")
    assert v.get_tags().has_tag("quoted")
    assert PrimitiveValue(TYPE_STRING, "x").get_tags() is None


# --- Boolean coercion ---

@pytest.mark.parametrize("value, expected", [
    (None, False),
    (PrimitiveValue(TYPE_NUMBER, None), False),
    (PrimitiveValue(TYPE_NUMBER, 0), False),
    (PrimitiveValue(TYPE_NUMBER, 7), True),
    (PrimitiveValue(TYPE_NUMBER, 0.0), True),
    (PrimitiveValue(TYPE_STRING, ""), True),
    (PrimitiveValue(TYPE_STRING, "abc"), True),
    (TRUE, True),
    (FALSE, False),
])
def test_convert_value_to_boolean(value, expected):
    assert convert_value_to_boolean(value) is expected


def test_convert_value_to_boolean_keep_null():
    assert convert_value_to_boolean(None, keep_null=True) is None
    assert convert_value_to_boolean(NIL, keep_null=True) is None
    assert convert_value_to_boolean(PrimitiveValue(TYPE_NUMBER, 0), keep_null=True) is False


def test_convert_value_to_boolean_value():
    assert convert_value_to_boolean_value(TRUE) is TRUE
    res = convert_value_to_boolean_value(PrimitiveValue(TYPE_NUMBER, 3))
    assert res.get_type() == TYPE_BOOLEAN and res.get() is True
    assert convert_value_to_boolean_value(None) is FALSE
    assert convert_value_to_boolean_value(None, keep_null=True) is None
    assert convert_value_to_boolean_value(NIL, keep_null=True) is None


# --- Value helpers ---

def test_create_value_keeps_existing_values():
    v = PrimitiveValue(TYPE_NUMBER, 1)
    assert create_value("OTHER", v) is v
    wrapped = create_value(TYPE_STRING, "s")
    assert wrapped.get_type() == TYPE_STRING and wrapped.get() == "s"


def test_as_helpers():
    env = Environment()
    v = as_value(env, 5)
    assert v.get() == 5 and v.get_type() is None
    assert as_expression(env, v) is v
    assert as_object(env, v) == 5
    assert as_object(env, "raw") == "raw"


def test_simple_values_are_their_own_value():
    env = Environment()
    v = RegexValue("[a-z]+")
    assert v.get_type() == TYPE_REGEX
    assert v.has_value()
    assert v.evaluate(env) is v
    assert v.simplify(env) is v
    assert v == RegexValue("[a-z]+")


# --- Cached expressions ---

class CountingExpression(SimpleCachedExpression):
    def __init__(self):
        super().__init__("COUNT", None)
        self.calls = 0

    def do_evaluation(self, env, *args):
        self.calls += 1
        return PrimitiveValue(TYPE_NUMBER, self.calls)


def test_cached_expression_evaluates_once_without_args():
    env = Environment()
    e = CountingExpression()
    assert not e.has_value()
    first = e.evaluate(env)
    assert e.evaluate(env) is first
    assert e.calls == 1
    assert e.has_value()


def test_cached_expression_with_args_is_always_fresh():
    env = Environment()
    e = CountingExpression()
    e.evaluate(env, "tok1")
    e.evaluate(env, "tok2")
    assert e.calls == 2
    # Per-call evaluations never populate the cache.
    assert not e.has_value()


def test_cached_expression_respects_environment_caching_flag():
    env = Environment(caching=False)
    e = CountingExpression()
    e.evaluate(env)
    e.evaluate(env)
    assert e.calls == 2


def test_cached_expression_disable_caching():
    env = Environment()
    e = CountingExpression()
    e.disable_caching = True
    e.evaluate(env)
    e.evaluate(env)
    assert e.calls == 2


# --- Errors ---

def test_error_classes_have_builtin_bases():
    assert issubclass(UnknownFunction, NameError)
    assert issubclass(NoMatchingOverload, TypeError)
    assert issubclass(UnboundVariable, KeyError)
    assert str(UnboundVariable("x")) == "Unknown variable: x"


def test_no_matching_overload_message_lists_candidates():
    f1 = NativeFunction(lambda a: a, Sig(int), name="f")
    f2 = NativeFunction(lambda a: a, Sig(str), name="f")
    err = NoMatchingOverload("f", [PrimitiveValue(TYPE_NUMBER, 1.5)], [f1, f2], expr="call")
    lines = str(err).splitlines()
    assert lines[0] == "Cannot find function matching args: f"
    assert lines[1] == "Args are: NUMBER(1.5)"
    assert lines[2] == "Options are:"
    assert lines[3:] == ["f(int)", "f(str)"]
    assert err.expr == "call"
    assert isinstance(err, ExpressionError)


def test_no_matching_overload_without_candidates():
    err = NoMatchingOverload("g", [], [])
    assert str(err).splitlines()[-1] == "No options"
