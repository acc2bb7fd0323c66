"""
A pretty-printer for tokex expressions and values.
"""
import re

from tokex.tokex_datatypes import SimpleValue, Tags, TypedExpression, WrappedExpression


class Printer:
    """Formats expressions in source-like form and values as TYPE(payload)."""

    def __init__(self, indent_width=2):
        self._indent_char = " " * indent_width
        self._handlers = self._create_handlers()

    def pformat(self, obj, level=0):
        """Public entry point to format an object."""
        handler = self._get_handler(obj)
        return handler(obj, level)

    def _get_handler(self, obj):
        """Dispatcher to find the correct formatting method."""
        obj_type = type(obj)
        if obj_type in self._handlers:
            return self._handlers[obj_type]
        # Subclasses (e.g. AndExpression, IndexedExpression) format like their base.
        for klass in obj_type.__mro__[1:]:
            if klass in self._handlers:
                return self._handlers[klass]
        if isinstance(obj, SimpleValue):
            return self._pformat_value
        if isinstance(obj, WrappedExpression):
            return lambda o, l: self.pformat(o.expr, l)
        if isinstance(obj, (list, tuple)):
            return self._pformat_sequence
        return lambda o, l: repr(o)

    def _create_handlers(self):
        from tokex.tokex_interpreter import (
            VarExpression, VarAssignmentExpression, RegexMatchVarExpression, RegexMatchResultVarExpression,
            FunctionCallExpression, MethodCallExpression, IfExpression, ListExpression,
        )
        from tokex.tokex_composite import CompositeValue
        from tokex.tokex_dispatch import Sig, NativeFunction, GenericFunction
        return {
            str: self._pformat_str,
            int: self._pformat_primitive,
            float: self._pformat_primitive,
            bool: self._pformat_bool,
            type(None): self._pformat_none,
            re.Pattern: self._pformat_pattern,
            Tags: lambda o, l: repr(o),
            VarExpression: self._pformat_var,
            VarAssignmentExpression: self._pformat_assignment,
            RegexMatchVarExpression: self._pformat_regex_match_var,
            RegexMatchResultVarExpression: self._pformat_regex_match_var,
            FunctionCallExpression: self._pformat_function_call,
            MethodCallExpression: self._pformat_method_call,
            IfExpression: self._pformat_if,
            ListExpression: self._pformat_list,
            CompositeValue: self._pformat_composite,
            Sig: self._pformat_sig,
            NativeFunction: self._pformat_native_function,
            GenericFunction: lambda o, l: repr(o),
        }

    def _pformat_primitive(self, obj, level):
        return str(obj)

    def _pformat_str(self, obj, level):
        escaped = obj.replace('\\', '\\\\').replace('"', '\\"')
        return f'"{escaped}"'

    def _pformat_bool(self, obj, level):
        return 'TRUE' if obj else 'FALSE'

    def _pformat_none(self, obj, level):
        return 'NIL'

    def _pformat_pattern(self, obj, level):
        return f"/{obj.pattern}/"

    def _pformat_sequence(self, obj, level):
        return "(" + ", ".join(self.pformat(item, level) for item in obj) + ")"

    def _pformat_value(self, obj, level):
        return f"{obj.get_type()}({self._pformat_payload(obj.get(), level)})"

    def _pformat_payload(self, payload, level):
        # Payloads render in their natural form; nested expressions keep their own formatting.
        if isinstance(payload, (TypedExpression, WrappedExpression, list, tuple)):
            return self.pformat(payload, level)
        return str(payload)

    def _pformat_var(self, obj, level):
        return obj.get()

    def _pformat_assignment(self, obj, level):
        return f"{obj.var_name} = {self.pformat(obj.value_expr, level)}"

    def _pformat_regex_match_var(self, obj, level):
        return f"${obj.get()}"

    def _pformat_args(self, params, level):
        return ", ".join(self.pformat(p, level) for p in params)

    def _pformat_function_call(self, obj, level):
        return f"{obj.function}({self._pformat_args(obj.params, level)})"

    def _pformat_method_call(self, obj, level):
        return f"{self.pformat(obj.object, level)}.{obj.function}({self._pformat_args(obj.params, level)})"

    def _pformat_if(self, obj, level):
        cond = self.pformat(obj.cond_expr, level)
        then = self.pformat(obj.true_expr, level)
        other = self.pformat(obj.false_expr, level)
        return f"IF({cond}, {then}, {other})"

    def _pformat_list(self, obj, level):
        return self._pformat_sequence(obj.exprs, level)

    def _pformat_composite(self, obj, level):
        fields = obj.get()
        if not fields:
            return "{}"
        if len(fields) <= 3 and all(not isinstance(v, type(obj)) for v in fields.values()):
            inner = ", ".join(f"{k}: {self.pformat(v, level)}" for k, v in fields.items())
            return f"{{ {inner} }}"
        outer_indent = self._indent_char * level
        inner_indent = self._indent_char * (level + 1)
        lines = [f"{inner_indent}{k}: {self.pformat(v, level + 1)}" for k, v in fields.items()]
        return "{\n" + ",\n".join(lines) + f"\n{outer_indent}}}"

    def _pformat_type_name(self, t):
        if t is None:
            return "ANY"
        if isinstance(t, str):
            return t
        if isinstance(t, tuple):
            return "|".join(self._pformat_type_name(x) for x in t)
        return getattr(t, "__name__", repr(t))

    def _pformat_sig(self, obj, level):
        parts = [self._pformat_type_name(t) for t in obj.positional]
        if obj.variadic:
            parts.append(f"{self._pformat_type_name(obj.rest)}...")
        return "(" + ",".join(parts) + ")"

    def _pformat_native_function(self, obj, level):
        sig = self._pformat_sig(obj.sig, level) if obj.sig is not None else "(...)"
        return f"{obj.name}{sig}"
