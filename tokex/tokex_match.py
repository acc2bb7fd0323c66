"""
Results of matching a pattern against a sequence of elements (tokens).

A match result exposes numbered and named capture groups over the original
element sequence, plus two pseudo-groups covering the elements before and
after the whole match.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, Sequence, Tuple, Union

GROUP_BEFORE_MATCH = -(2 ** 31)
GROUP_AFTER_MATCH = -(2 ** 31) + 1

GroupRef = Union[int, str]


class MatchedGroup:
    """The span [begin, end) of one capture group and its attached value."""
    def __init__(self, begin: int = -1, end: int = -1, value: Any = None):
        self.begin = begin
        self.end = end
        self.value = value

    def copy(self) -> 'MatchedGroup':
        return MatchedGroup(self.begin, self.end, self.value)

    def __repr__(self) -> str:
        return f"({self.begin},{self.end})"

    def __eq__(self, other):
        return (isinstance(other, MatchedGroup) and self.begin == other.begin
                and self.end == other.end and self.value == other.value)


@dataclass
class MatchedGroupInfo:
    """Everything known about one capture: text, elements, per-element results and value."""
    text: Optional[str]
    nodes: List[Any]
    match_results: Optional[List[Any]] = None
    value: Any = None


@dataclass
class VarGroupBindings:
    """Variable names bound to group indices; var_names[i] names group i (or is None)."""
    var_names: List[Optional[str]] = field(default_factory=list)

    def set(self, group: int, name: str):
        while len(self.var_names) <= group:
            self.var_names.append(None)
        self.var_names[group] = name


def _default_nodes_to_string(nodes: Sequence[Any]) -> str:
    return " ".join(str(n) for n in nodes)


class SequenceMatchResult(ABC):
    """Group accessors over one match of a pattern against a sequence of elements."""

    @abstractmethod
    def start(self, group: GroupRef = 0) -> int: ...

    @abstractmethod
    def end(self, group: GroupRef = 0) -> int: ...

    @abstractmethod
    def group(self, group: GroupRef = 0) -> Optional[str]: ...

    @abstractmethod
    def group_nodes(self, group: GroupRef = 0) -> Optional[List[Any]]: ...

    @abstractmethod
    def group_info(self, group: GroupRef = 0) -> Optional[MatchedGroupInfo]: ...


class BasicSequenceMatchResult(SequenceMatchResult):
    """A read-only view over one match of a pattern against elements.

    ``groups[0]`` spans the whole match; a None entry means the group did
    not participate. Group accessors take either an index or a variable
    name bound through ``var_group_bindings``; a name resolves to the first
    participating group bound to it. ``match_results``, when present, holds
    one auxiliary result per element.
    """
    def __init__(self, elements: Sequence[Any], groups: Optional[List[Optional[MatchedGroup]]] = None,
                 match_results: Optional[List[Any]] = None,
                 var_group_bindings: Optional[VarGroupBindings] = None,
                 score: float = 0.0, order: int = 0,
                 nodes_to_string: Optional[Callable[[Sequence[Any]], str]] = None):
        self._elements = elements
        self.groups: List[Optional[MatchedGroup]] = list(groups) if groups is not None else []
        self.match_results = match_results
        self.var_group_bindings = var_group_bindings
        self.score = score
        self.order = order
        self.nodes_to_string = nodes_to_string
        for g in self.groups:
            if g is not None and not (0 <= g.begin <= g.end <= len(elements)):
                raise ValueError(f"Invalid group span {g!r} for {len(elements)} elements")

    @classmethod
    def from_elements(cls, elements: Sequence[Any]) -> 'BasicSequenceMatchResult':
        return cls(elements)

    def elements(self) -> Sequence[Any]:
        return self._elements

    def copy(self) -> 'BasicSequenceMatchResult':
        """Returns an independent clone of the groups sharing the element sequence."""
        res = BasicSequenceMatchResult.__new__(BasicSequenceMatchResult)
        res._elements = self._elements
        res.groups = [g.copy() if g is not None else None for g in self.groups]
        res.match_results = list(self.match_results) if self.match_results is not None else None
        res.var_group_bindings = self.var_group_bindings
        res.score = self.score
        res.order = self.order
        res.nodes_to_string = self.nodes_to_string
        return res

    def to_basic_sequence_match_result(self) -> 'BasicSequenceMatchResult':
        return self.copy()

    @property
    def interval(self) -> Tuple[int, int]:
        return self.start(0), self.end(0)

    # --- Group resolution ---

    def _matched_group(self, group: int) -> Optional[MatchedGroup]:
        if 0 <= group < len(self.groups):
            return self.groups[group]
        return None

    def _first_var_group(self, name: str) -> int:
        if self.var_group_bindings is None:
            return -1
        for i, var_name in enumerate(self.var_group_bindings.var_names):
            if var_name == name and self._matched_group(i) is not None:
                return i
        return -1

    def _resolve(self, group: GroupRef) -> Optional[int]:
        """Maps a group reference to an index; None when a name did not participate."""
        if isinstance(group, str):
            g = self._first_var_group(group)
            return g if g >= 0 else None
        return group

    def _span(self, group: int) -> Optional[Tuple[int, int]]:
        if group in (GROUP_BEFORE_MATCH, GROUP_AFTER_MATCH):
            whole = self._matched_group(0)
            n = len(self._elements)
            if whole is None:
                # No match: both pseudo-groups are empty at the sequence edges.
                return (0, 0) if group == GROUP_BEFORE_MATCH else (n, n)
            if group == GROUP_BEFORE_MATCH:
                return 0, whole.begin
            return whole.end, n
        mg = self._matched_group(group)
        return (mg.begin, mg.end) if mg is not None else None

    # --- Accessors ---

    def start(self, group: GroupRef = 0) -> int:
        if group == GROUP_BEFORE_MATCH:
            return 0
        g = self._resolve(group)
        span = self._span(g) if g is not None else None
        return span[0] if span is not None else -1

    def end(self, group: GroupRef = 0) -> int:
        if group == GROUP_AFTER_MATCH:
            return len(self._elements)
        g = self._resolve(group)
        span = self._span(g) if g is not None else None
        return span[1] if span is not None else -1

    def group(self, group: GroupRef = 0) -> Optional[str]:
        nodes = self.group_nodes(group)
        if nodes is None:
            return None
        converter = self.nodes_to_string or _default_nodes_to_string
        return converter(nodes)

    def group_nodes(self, group: GroupRef = 0) -> Optional[List[Any]]:
        g = self._resolve(group)
        span = self._span(g) if g is not None else None
        if span is None:
            return None
        return list(self._elements[span[0]:span[1]])

    def group_value(self, group: GroupRef = 0) -> Any:
        g = self._resolve(group)
        if g is None:
            return None
        if g in (GROUP_BEFORE_MATCH, GROUP_AFTER_MATCH):
            return self.group_nodes(g)
        mg = self._matched_group(g)
        return mg.value if mg is not None else None

    def group_info(self, group: GroupRef = 0) -> Optional[MatchedGroupInfo]:
        g = self._resolve(group)
        if g is None:
            return None
        nodes = self.group_nodes(g)
        if nodes is None:
            return None
        return MatchedGroupInfo(self.group(g), nodes, self.group_match_results(g), self.group_value(g))

    def group_count(self) -> int:
        return max(len(self.groups) - 1, 0)

    def group_match_results(self, group: GroupRef = 0) -> Optional[List[Any]]:
        if self.match_results is None:
            return None
        g = self._resolve(group)
        span = self._span(g) if g is not None else None
        if span is None:
            return None
        return list(self.match_results[span[0]:span[1]])

    def node_match_result(self, index: int) -> Any:
        return self.match_results[index] if self.match_results is not None else None

    def group_match_result(self, group: GroupRef, index: int) -> Any:
        if self.match_results is None:
            return None
        s = self.start(group)
        e = self.end(group)
        if 0 <= s < e and 0 <= index < e - s:
            return self.match_results[s + index]
        return None

    def __repr__(self) -> str:
        return f"<BasicSequenceMatchResult groups={self.groups!r} text={self.group()!r}>"
