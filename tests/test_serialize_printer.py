import json
import re
import pytest

from tokex.tokex_printer import Printer
from tokex.tokex_serialize import serialize, deserialize, detect_format
from tokex.tokex_composite import CompositeValue
from tokex.tokex_datatypes import PrimitiveValue, RegexValue, TRUE, NIL, TYPE_NUMBER, TYPE_STRING
from tokex.tokex_dispatch import NativeFunction, Sig, TypeDescriptor
from tokex.tokex_interpreter import (
    VarExpression, VarAssignmentExpression, RegexMatchVarExpression, FunctionCallExpression,
    MethodCallExpression, IfExpression, CaseExpression, ListExpression, FieldExpression,
)
from tokex.tokex_match import BasicSequenceMatchResult, MatchedGroup


def num(x):
    return PrimitiveValue(TYPE_NUMBER, x)


def s(x):
    return PrimitiveValue(TYPE_STRING, x)


# --- Printer ---

def test_printer_expressions():
    p = Printer()
    assert p.pformat(VarExpression("x")) == "x"
    assert p.pformat(RegexMatchVarExpression(1)) == "$1"
    assert p.pformat(FunctionCallExpression("GT", [VarExpression("x"), num(4)])) == "GT(x, NUMBER(4))"
    assert p.pformat(MethodCallExpression("size", VarExpression("xs"), [])) == "xs.size()"
    assert p.pformat(VarAssignmentExpression("y", num(1), True)) == "y = NUMBER(1)"
    assert p.pformat(IfExpression(VarExpression("c"), num(1), num(2))) == "IF(c, NUMBER(1), NUMBER(2))"
    assert p.pformat(CaseExpression([(VarExpression("c"), num(1))], num(2))) == "IF(c, NUMBER(1), NUMBER(2))"
    assert p.pformat(ListExpression(exprs=[VarExpression("a"), VarExpression("b")])) == "(a, b)"
    assert p.pformat(FieldExpression(VarExpression("o"), "f")) == "Select(o, STRING(f))"


def test_printer_values():
    p = Printer()
    assert p.pformat(TRUE) == "BOOLEAN(True)"
    assert p.pformat(RegexValue("a+")) == "REGEX(a+)"
    assert p.pformat(NIL) == "NIL(None)"
    assert p.pformat(None) == "NIL"
    assert p.pformat(True) == "TRUE"
    assert p.pformat('say "hi"') == '"say \\"hi\\""'
    assert p.pformat(re.compile("x+")) == "/x+/"


def test_printer_composites():
    p = Printer()
    assert p.pformat(CompositeValue()) == "{}"
    small = CompositeValue({"type": VarExpression("Point"), "x": num(1)})
    assert p.pformat(small) == "{ type: Point, x: NUMBER(1) }"
    big = CompositeValue({"a": num(1), "b": num(2), "c": num(3), "d": num(4)})
    assert p.pformat(big) == "{\n  a: NUMBER(1),\n  b: NUMBER(2),\n  c: NUMBER(3),\n  d: NUMBER(4)\n}"


def test_printer_signatures():
    p = Printer()
    assert p.pformat(Sig((int, float), str, rest=None)) == "(int|float,str,ANY...)"
    assert p.pformat(NativeFunction(len, Sig("STRING"), name="Size")) == "Size(STRING)"
    assert p.pformat(NativeFunction(len, name="Size")) == "Size(...)"


def test_repr_uses_printer():
    assert repr(FunctionCallExpression("Not", [VarExpression("x")])) == "Not(x)"


# --- Serialization ---

def test_detect_format():
    assert detect_format('{"a": 1}') == 'json'
    assert detect_format('[1]') == 'json'
    assert detect_format('a: 1') == 'yaml'
    assert detect_format(None) is None


def test_deserialize():
    assert deserialize('{"a": 1}') == {"a": 1}
    assert deserialize(b"a: [1, 2]") == {"a": [1, 2]}
    assert deserialize("{a: 1}", fmt="json") == {"a": 1}
    with pytest.raises(ValueError):
        deserialize("a", fmt="xml")


def test_serialize_values_and_composites():
    c = CompositeValue({"name": s("x"), "items": PrimitiveValue("LIST", [num(1), num(2)])}, True)
    assert json.loads(serialize(c)) == {"name": "x", "items": [1, 2]}
    assert serialize(num(3), pretty=False) == "3"
    assert deserialize(serialize(c, fmt="yaml"), fmt="yaml") == {"name": "x", "items": [1, 2]}
    with pytest.raises(ValueError):
        serialize(c, fmt="xml")


def test_serialize_match_result():
    mr = BasicSequenceMatchResult(["a", "b", "c"], groups=[MatchedGroup(0, 2), None], score=1.5)
    data = json.loads(serialize(mr))
    assert data["score"] == 1.5
    assert data["groups"][0] == {"text": "a b", "nodes": ["a", "b"], "match_results": None, "value": None}
    assert data["groups"][1] is None


def test_serialize_falls_back_to_text():
    assert json.loads(serialize(TypeDescriptor.for_class(dict))) == "dict"
    assert json.loads(serialize(PrimitiveValue("OBJ", object))) == str(object)
