"""
Composite values: ordered field name -> expression maps, optionally
converted into typed objects through a ``type`` field.
"""
from typing import Any, Dict, Optional, Set, TYPE_CHECKING

from tokex.tokex_datatypes import (
    Expression, Value, SimpleCachedExpression, PrimitiveValue, RegexValue,
    TYPE_COMPOSITE, TYPE_CLASS, TYPE_ANNOTATION_KEY, TYPE_STRING, TYPE_REGEX, TYPE_NUMBER,
    UnknownCompositeField, InvalidCompositeValue, ConstructionFailure, create_value,
)
from tokex.tokex_dispatch import TypeDescriptor

if TYPE_CHECKING:
    from tokex.tokex_env import Environment


class CompositeValue(SimpleCachedExpression, Value):
    """A structural value keyed by field name.

    A composite built with ``is_evaluated=True`` is its own cached value;
    caching stays disabled while any field still needs evaluation, because
    field values may depend on per-call arguments.
    """
    def __init__(self, fields: Optional[Dict[str, Expression]] = None, is_evaluated: bool = False, *tags: str):
        super().__init__(TYPE_COMPOSITE, dict(fields) if fields else {}, *tags)
        if is_evaluated:
            self.evaluated = self
            self.disable_caching = not self._check_value()

    def _check_value(self) -> bool:
        return all(expr is None or expr.has_value() for expr in self.value.values())

    def get_attributes(self) -> Set[str]:
        return set(self.value.keys())

    def get_expression(self, attr: str) -> Optional[Expression]:
        return self.value.get(attr)

    def get_value(self, attr: str) -> Optional[Value]:
        expr = self.value.get(attr)
        if expr is None:
            return None
        if isinstance(expr, Value):
            return expr
        raise ValueError("Expression was not evaluated")

    def get(self, attr: Optional[str] = None) -> Any:
        """Without attr, the field map; with attr, that field's evaluated payload."""
        if attr is None:
            return self.value
        v = self.get_value(attr)
        return v.get() if v is not None else None

    def set(self, attr: str, obj: Any):
        self.value[attr] = obj if isinstance(obj, Expression) else create_value(None, obj)
        self.evaluated = None

    def simplify(self, env: 'Environment') -> Expression:
        res = self.simplify_no_type_conversion(env)
        if res._check_value():
            return res.do_evaluation(env)
        return res

    def simplify_no_type_conversion(self, env: 'Environment', *args) -> 'CompositeValue':
        fields = {k: v.simplify(env) if v is not None else None for k, v in self.value.items()}
        return _with_tags(self, CompositeValue(fields, True))

    def evaluate_no_type_conversion(self, env: 'Environment', *args) -> 'CompositeValue':
        fields = {k: v.evaluate(env, *args) if v is not None else None for k, v in self.value.items()}
        return _with_tags(self, CompositeValue(fields, True))

    def do_evaluation(self, env: 'Environment', *args) -> Optional[Value]:
        v = self._attempt_type_conversion(env, *args)
        if v is None:
            v = self.evaluate_no_type_conversion(env, *args)
        self.disable_caching = not self._check_value()
        return v

    def _attempt_type_conversion(self, env: 'Environment', *args) -> Optional[Value]:
        from tokex.tokex_interpreter import VarExpression
        type_field = self.value.get("type")
        if type_field is None:
            return None
        type_value = type_field.evaluate(env, *args)
        if isinstance(type_field, VarExpression):
            # The variable's name labels the resulting value.
            type_name = type_field.get()
            if type_value is None:
                return None
            if type_value.get_type() == TYPE_CLASS and isinstance(type_value.get(), TypeDescriptor):
                return self._construct(env, type_value.get(), type_name, *args)
            target = type_value.get()
            if target is not None:
                return self._build_from(env, target, type_name, *args)
            return None
        if type_value is not None and isinstance(type_value.get(), str):
            return self._convert_builtin(env, type_value.get(), *args)
        return None

    def _construct(self, env: 'Environment', descriptor: TypeDescriptor, type_name: str, *args) -> Value:
        obj = descriptor.new_instance()
        for name, expr in self.value.items():
            if name == "type":
                continue
            if not descriptor.has_property(obj, name):
                raise UnknownCompositeField(name, type_name, self)
            v = expr.evaluate(env, *args) if expr is not None else None
            try:
                descriptor.set_property(obj, name, v.get() if v is not None else None)
            except AttributeError as ex:
                raise UnknownCompositeField(name, type_name, self) from ex
        return PrimitiveValue(type_name, obj)

    def _build_from(self, env: 'Environment', target: Any, type_name: str, *args) -> Optional[Value]:
        """Lets a non-class value build itself an object from the evaluated fields."""
        descriptor = env.lookup_type_for(type(target))
        builder = descriptor.build_composite if descriptor is not None else None
        if builder is None:
            method = getattr(target, "from_composite", None)
            if not callable(method):
                return None
            builder = lambda _target, cv: method(cv)
        evaluated = self.evaluate_no_type_conversion(env, *args)
        try:
            return PrimitiveValue(type_name, builder(target, evaluated))
        except Exception as ex:
            raise ConstructionFailure(type_name, self) from ex

    def _convert_builtin(self, env: 'Environment', type_name: str, *args) -> Value:
        value_field = self.value.get("value")
        value = value_field.evaluate(env, *args) if value_field is not None else None
        obj = value.get() if value is not None else None
        if type_name == TYPE_ANNOTATION_KEY:
            return PrimitiveValue(TYPE_ANNOTATION_KEY, env.lookup_annotation_key_by_name(obj))
        if type_name == TYPE_CLASS:
            return PrimitiveValue(TYPE_CLASS, env.lookup_type(obj))
        if type_name == TYPE_STRING:
            return PrimitiveValue(TYPE_STRING, obj)
        if type_name == TYPE_REGEX:
            return RegexValue(obj)
        if type_name == TYPE_NUMBER:
            if isinstance(obj, (int, float)) and not isinstance(obj, bool):
                return PrimitiveValue(TYPE_NUMBER, obj)
            if isinstance(obj, str):
                try:
                    return PrimitiveValue(TYPE_NUMBER, float(obj) if "." in obj else int(obj))
                except ValueError as ex:
                    raise InvalidCompositeValue(f"Invalid value {obj!r} for type {type_name}", self) from ex
            raise InvalidCompositeValue(f"Invalid value {value!r} for type {type_name}", self)
        return PrimitiveValue(type_name, obj)

    def __eq__(self, other):
        if not isinstance(other, CompositeValue):
            return NotImplemented
        return self.value == other.value

    __hash__ = None


def _with_tags(src: CompositeValue, dst: CompositeValue) -> CompositeValue:
    if src.tags is not None:
        dst.set_tags(src.tags)
    return dst
