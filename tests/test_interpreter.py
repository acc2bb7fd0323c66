import re
import pytest
from dataclasses import dataclass

from tokex.tokex_env import Environment
from tokex.tokex_runtime import StdLib
from tokex.tokex_datatypes import (
    PrimitiveValue, RegexValue, TRUE, FALSE,
    TYPE_NUMBER, TYPE_STRING, TYPE_LIST, TYPE_TOKENS, TYPE_MATCHED_GROUP_INFO,
    UnknownFunction, NoMatchingOverload, InvalidGroupReference,
)
from tokex.tokex_interpreter import (
    VarExpression, VarAssignmentExpression, RegexMatchVarExpression, RegexMatchResultVarExpression,
    FunctionCallExpression, IndexedExpression, FieldExpression, AndExpression, OrExpression,
    NotExpression, MethodCallExpression, IfExpression, CaseExpression, ConditionalExpression,
    ListExpression, clone_expression,
)
from tokex.tokex_composite import CompositeValue
from tokex.tokex_match import BasicSequenceMatchResult, MatchedGroup, VarGroupBindings


def make_env():
    return StdLib().install(Environment())


def num(x):
    return PrimitiveValue(TYPE_NUMBER, x)


def s(x):
    return PrimitiveValue(TYPE_STRING, x)


@dataclass
class Point:
    x: int = 0
    y: int = 0

    def shifted(self, dx):
        return Point(self.x + dx, self.y)


def six_tokens():
    return BasicSequenceMatchResult(
        ["a", "b", "c", "d", "e", "f"],
        groups=[MatchedGroup(1, 5), MatchedGroup(2, 4)],
        var_group_bindings=VarGroupBindings([None, "mid"]),
    )


# --- Variables ---

def test_var_compared_with_number():
    env = make_env()
    env.bind("x", 5)
    expr = FunctionCallExpression("GT", [VarExpression("x"), num(4)])
    assert expr.evaluate(env) == TRUE


def test_unbound_variable_yields_no_value_and_a_diagnostic():
    env = make_env()
    assert VarExpression("ghost").evaluate(env) is None
    assert env.side_effects[-1]['message'] == "Unknown variable: ghost"


def test_var_reads_annotation_slot_of_token():
    env = make_env()
    env.bind_annotation_key("word", "text")
    token = {"text": "dog"}
    v = VarExpression("word").evaluate(env, token)
    assert v.get() == "dog"
    assert v.get_type() == "word"


def test_var_assignment_writes_annotation_slot():
    env = make_env()
    env.bind_annotation_key("word", "text")
    token = {"text": "dog"}
    res = VarExpression("word").assign(s("cat")).evaluate(env, token)
    assert res.get() == "cat"
    assert token["text"] == "cat"
    assert "word" not in env


def test_var_assignment_binds_value_or_payload():
    env = make_env()
    VarAssignmentExpression("a", num(1), True).evaluate(env)
    assert env.get("a") == num(1)
    VarAssignmentExpression("b", num(2), False).evaluate(env)
    assert env.get("b") == 2


def test_regex_assignment_registers_string_regex():
    env = make_env()
    RegexMatchVarExpression("digits").assign(RegexValue("[0-9]+")).evaluate(env)
    assert env.get("digits") == "[0-9]+"
    assert env.get_string_regex("digits").pattern == "[0-9]+"


# --- Match variables ---

def test_regex_match_var_returns_fresh_token_lists():
    env = make_env()
    mr = six_tokens()
    expr = RegexMatchVarExpression(1)
    first = expr.evaluate(env, mr)
    second = expr.evaluate(env, mr)
    assert first.get_type() == TYPE_TOKENS
    assert first.get() == ["c", "d"]
    assert first.get() is not second.get()
    first.get().append("zzz")
    assert mr.group_nodes(1) == ["c", "d"]


def test_regex_match_var_by_name():
    env = make_env()
    assert RegexMatchVarExpression("mid").evaluate(env, six_tokens()).get() == ["c", "d"]
    assert RegexMatchVarExpression("absent").evaluate(env, six_tokens()).get() is None


def test_regex_match_var_on_string_match():
    env = make_env()
    m = re.match(r"(a)(b)", "ab")
    v = RegexMatchVarExpression(2).evaluate(env, m)
    assert v.get_type() == TYPE_STRING and v.get() == "b"
    with pytest.raises(InvalidGroupReference):
        RegexMatchVarExpression("name").evaluate(env, m)


def test_regex_match_var_edge_cases():
    env = make_env()
    assert RegexMatchVarExpression(1).evaluate(env) is None
    with pytest.raises(InvalidGroupReference):
        RegexMatchVarExpression(1).evaluate(env, "not a match")


def test_regex_match_var_value_of():
    assert RegexMatchVarExpression.value_of("12").get() == 12
    assert RegexMatchVarExpression.value_of("name").get() == "name"


def test_regex_match_result_var_returns_group_info():
    env = make_env()
    v = RegexMatchResultVarExpression(1).evaluate(env, six_tokens())
    assert v.get_type() == TYPE_MATCHED_GROUP_INFO
    assert v.get().text == "c d"
    assert v.get().nodes == ["c", "d"]
    assert RegexMatchResultVarExpression(1).evaluate(env) is None


# --- Function calls ---

def test_unknown_function_raises():
    with pytest.raises(UnknownFunction):
        FunctionCallExpression("Frobnicate", [num(1)]).evaluate(make_env())


def test_incompatible_arguments_raise():
    with pytest.raises(NoMatchingOverload) as exc:
        FunctionCallExpression("GT", [num(1), s("a")]).evaluate(make_env())
    assert "Cannot find function matching args: GT" in str(exc.value)


def test_function_call_simplify_folds_constants():
    env = make_env()
    folded = FunctionCallExpression("Add", [num(1), num(2)]).simplify(env)
    assert folded == num(3)
    kept = FunctionCallExpression("Add", [VarExpression("x"), num(2)]).simplify(env)
    assert isinstance(kept, FunctionCallExpression)


def test_logic_expressions():
    env = make_env()
    assert AndExpression([TRUE, num(1)]).evaluate(env) == TRUE
    assert AndExpression([TRUE, num(0)]).simplify(env) == FALSE
    assert OrExpression([FALSE, VarExpression("missing"), s("")]).evaluate(env) == TRUE
    assert NotExpression(VarExpression("missing")).evaluate(env) == TRUE


def test_indexed_expression_and_assignment():
    env = make_env()
    items = ListExpression(exprs=[num(1), num(2)])
    assert IndexedExpression(items, 1).evaluate(env) == num(2)
    assert IndexedExpression(items, 5).evaluate(env) is None

    env.bind("xs", PrimitiveValue(TYPE_LIST, [num(1)]))
    IndexedExpression(VarExpression("xs"), 0).assign(num(9)).evaluate(env)
    assert env.get("xs").get() == [num(9)]


def test_field_expression_on_composite_and_mapping():
    env = make_env()
    env.bind("c", CompositeValue({"a": num(1)}, True))
    assert FieldExpression(VarExpression("c"), "a").evaluate(env) == num(1)

    env.bind("m", {"k": "v"})
    assert FieldExpression(VarExpression("m"), "k").evaluate(env).get() == "v"
    FieldExpression(VarExpression("m"), "k").assign(s("w")).evaluate(env)
    assert env.get("m") == {"k": "w"}


def test_method_call():
    env = make_env()
    env.bind("p", Point(1, 2))
    res = MethodCallExpression("shifted", VarExpression("p"), [num(1)]).evaluate(env)
    assert res.get() == Point(2, 2)


def test_method_call_on_missing_receiver_yields_nothing():
    env = make_env()
    assert MethodCallExpression("shifted", VarExpression("ghost"), [num(1)]).evaluate(env) is None


# --- Conditionals ---

def test_if_expression():
    env = make_env()
    env.bind("x", 3)
    cond = FunctionCallExpression("GT", [VarExpression("x"), num(1)])
    expr = IfExpression(cond, s("big"), s("small"))
    assert expr.evaluate(env).get() == "big"
    assert IfExpression(FALSE, s("big"), s("small")).simplify(env) == s("small")
    assert isinstance(expr.simplify(env), IfExpression)


def test_case_expression_first_match_wins():
    env = make_env()
    env.bind("x", 5)
    case = CaseExpression([
        (FunctionCallExpression("LT", [VarExpression("x"), num(3)]), s("low")),
        (FunctionCallExpression("LT", [VarExpression("x"), num(10)]), s("mid")),
    ], s("high"))
    assert case.evaluate(env).get() == "mid"
    with pytest.raises(ValueError):
        CaseExpression([], s("x"))


def test_conditional_expression_operators():
    env = make_env()
    assert ConditionalExpression.binary("=~", s("abc"), RegexValue("a.c")).evaluate(env) == TRUE
    assert ConditionalExpression.binary("!~", s("abc"), RegexValue("a.c")).evaluate(env) == FALSE
    assert ConditionalExpression.binary("==", num(2), num(2)).evaluate(env) == TRUE
    assert ConditionalExpression(num(0)).evaluate(env) == FALSE
    assert ConditionalExpression(num(0)).get_type() == "BOOLEAN"
    with pytest.raises(ValueError):
        ConditionalExpression.binary("<>", num(1), num(2))


def test_match_expands_string_regexes():
    env = make_env()
    env.bind_string_regex("d", "[0-9]+")
    match = FunctionCallExpression("Match", [s("12-34"), RegexValue("$d-$d")])
    assert match.evaluate(env) == TRUE
    missing = FunctionCallExpression("Match", [VarExpression("nothing"), RegexValue("x")])
    assert missing.evaluate(env) == FALSE


# --- Lists and cloning ---

def test_list_expression():
    env = make_env()
    lst = ListExpression()
    lst.add(num(1))
    lst.add_all([VarExpression("x")])
    assert isinstance(lst.simplify(env), ListExpression)
    env.bind("x", 2)
    assert [v.get() for v in lst.evaluate(env).get()] == [1, 2]
    assert ListExpression(exprs=[num(1)]).simplify(env).get_type() == TYPE_LIST


def test_clone_expression_is_independent():
    env = make_env()
    composite = CompositeValue({"a": num(1)})
    composite.evaluate(env)
    clone = clone_expression(composite)
    assert clone is not composite
    assert clone.evaluated is not composite.evaluated
    assert clone.get() == composite.get()
