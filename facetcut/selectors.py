"""Selector catalog.

A selector is the first four bytes of keccak-256 over an operation's canonical
signature, ``name(type1,type2,...)``, rendered as ``0x`` + 8 lowercase hex
chars. Tuple parameters are spelled out as ``(t1,t2)`` followed by any array
suffix, so ``diamondCut((address,uint8,bytes4[])[],address,bytes)`` is the
canonical form of the diamond cut entry point.

The catalog works on a parsed interface description (a standard ABI list),
never on a live contract object. Output is a set: ordering is not part of the
contract.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Sequence, Tuple

from facetcut.core import keccak256
from facetcut.schema import validate_against_schema

DEFAULT_INITIALIZER = "init(bytes)"

_TYPE_ALIASES = {
    "uint": "uint256",
    "int": "int256",
    "byte": "bytes1",
}

_PARAM_MODIFIERS = {"memory", "calldata", "storage", "indexed", "payable"}


# =============================================================================
# INTERFACE DESCRIPTION
# =============================================================================

@dataclass(frozen=True)
class Parameter:
    """One operation parameter; ``components`` is set for tuple types."""
    type: str
    name: str = ""
    components: Tuple["Parameter", ...] = ()

    @property
    def canonical_type(self) -> str:
        if self.type.startswith("tuple"):
            suffix = self.type[len("tuple"):]
            inner = ",".join(c.canonical_type for c in self.components)
            return f"({inner}){suffix}"
        base, bracket, rest = self.type.partition("[")
        return _TYPE_ALIASES.get(base, base) + bracket + rest

    @classmethod
    def from_abi(cls, entry: Dict[str, Any]) -> "Parameter":
        return cls(
            type=str(entry["type"]),
            name=str(entry.get("name") or ""),
            components=tuple(cls.from_abi(c) for c in entry.get("components") or []),
        )


@dataclass(frozen=True)
class Operation:
    """An addressable operation exposed by a module."""
    name: str
    inputs: Tuple[Parameter, ...] = ()

    @property
    def signature(self) -> str:
        return f"{self.name}({','.join(p.canonical_type for p in self.inputs)})"

    @property
    def selector(self) -> str:
        return selector_of(self.signature)


@dataclass(frozen=True)
class InterfaceDescription:
    """Structural description of a module's operations."""
    operations: Tuple[Operation, ...] = field(default_factory=tuple)

    @classmethod
    def from_abi(cls, abi: Sequence[Dict[str, Any]]) -> "InterfaceDescription":
        """Parse a standard ABI list; only function entries become operations.

        Raises ValueError if the ABI does not match the interface schema.
        """
        errors = validate_against_schema(list(abi), "interface")
        if errors:
            raise ValueError(f"invalid interface description: {errors[0]}")
        ops = []
        for entry in abi:
            if entry.get("type") != "function":
                continue
            ops.append(Operation(
                name=str(entry["name"]),
                inputs=tuple(Parameter.from_abi(p) for p in entry.get("inputs") or []),
            ))
        return cls(operations=tuple(ops))

    @classmethod
    def from_signatures(cls, signatures: Iterable[str]) -> "InterfaceDescription":
        ops = []
        for sig in signatures:
            name, types = _parse_signature(sig)
            ops.append(Operation(name=name, inputs=tuple(_parameter_from_type(t) for t in types)))
        return cls(operations=tuple(ops))

    @property
    def signatures(self) -> List[str]:
        return [op.signature for op in self.operations]


# =============================================================================
# SIGNATURE PARSING
# =============================================================================

def _split_top_level(params: str) -> List[str]:
    parts: List[str] = []
    depth = 0
    current: List[str] = []
    for ch in params:
        if ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
            if depth < 0:
                raise ValueError(f"unbalanced parentheses in '{params}'")
        if ch == "," and depth == 0:
            parts.append("".join(current).strip())
            current = []
        else:
            current.append(ch)
    if depth != 0:
        raise ValueError(f"unbalanced parentheses in '{params}'")
    tail = "".join(current).strip()
    if tail or parts:
        parts.append(tail)
    if any(not p for p in parts):
        raise ValueError(f"empty parameter in '{params}'")
    return parts


def _canonical_param(param: str) -> str:
    """Reduce ``uint256 amount`` / ``(address,uint8)[] calldata cut`` to a type."""
    param = param.strip()
    if param.startswith("tuple("):
        param = param[len("tuple"):]
    if param.startswith("("):
        depth = 0
        for i, ch in enumerate(param):
            if ch == "(":
                depth += 1
            elif ch == ")":
                depth -= 1
                if depth == 0:
                    inner, rest = param[1:i], param[i + 1:]
                    break
        else:
            raise ValueError(f"unbalanced parentheses in '{param}'")
        suffix = rest.split()[0] if rest.split() else ""
        if suffix and not suffix.startswith("["):
            suffix = ""
        inner_types = ",".join(_canonical_param(p) for p in _split_top_level(inner)) if inner.strip() else ""
        return f"({inner_types}){suffix}"

    tokens = [t for t in param.split() if t not in _PARAM_MODIFIERS]
    if not tokens:
        raise ValueError(f"missing parameter type in '{param}'")
    base, bracket, rest = tokens[0].partition("[")
    return _TYPE_ALIASES.get(base, base) + bracket + rest


def _parse_signature(signature: str) -> Tuple[str, List[str]]:
    sig = " ".join(str(signature or "").split())
    if sig.startswith("function "):
        sig = sig[len("function "):]
    open_idx = sig.find("(")
    if open_idx <= 0:
        raise ValueError(f"not an operation signature: '{signature}'")
    name = sig[:open_idx].strip()
    depth = 0
    close_idx = -1
    for i in range(open_idx, len(sig)):
        if sig[i] == "(":
            depth += 1
        elif sig[i] == ")":
            depth -= 1
            if depth == 0:
                close_idx = i
                break
    if close_idx < 0 or not name.isidentifier():
        raise ValueError(f"not an operation signature: '{signature}'")
    body = sig[open_idx + 1:close_idx]
    types = [_canonical_param(p) for p in _split_top_level(body)] if body.strip() else []
    return name, types


def _parameter_from_type(canonical: str) -> Parameter:
    if canonical.startswith("("):
        close = canonical.rfind(")")
        inner, suffix = canonical[1:close], canonical[close + 1:]
        comps = tuple(_parameter_from_type(t) for t in _split_top_level(inner)) if inner else ()
        return Parameter(type="tuple" + suffix, components=comps)
    return Parameter(type=canonical)


def canonical_signature(signature: str) -> str:
    """Normalize a human-readable signature to its canonical form."""
    name, types = _parse_signature(signature)
    return f"{name}({','.join(types)})"


# =============================================================================
# CATALOG
# =============================================================================

def selector_of(signature: str) -> str:
    """Selector for one operation signature."""
    canonical = canonical_signature(signature)
    return "0x" + keccak256(canonical.encode("utf-8"))[:4].hex()


def catalog(
    interface: InterfaceDescription,
    initializer: Optional[str] = DEFAULT_INITIALIZER,
) -> FrozenSet[str]:
    """Every operation selector of ``interface`` except the initializer."""
    skip = canonical_signature(initializer) if initializer else None
    return frozenset(op.selector for op in interface.operations if op.signature != skip)


def subtract(selectors: Iterable[str], signatures: Iterable[str]) -> FrozenSet[str]:
    """Remove the selectors of explicitly named operations."""
    removed = {selector_of(sig) for sig in signatures}
    return frozenset(s for s in selectors if s not in removed)


class SelectorCatalog:
    """Catalog bound to one initializer convention."""

    def __init__(self, initializer: Optional[str] = DEFAULT_INITIALIZER):
        self.initializer = initializer

    def catalog(self, interface: InterfaceDescription) -> FrozenSet[str]:
        return catalog(interface, self.initializer)

    def selector_of(self, signature: str) -> str:
        return selector_of(signature)

    def subtract(self, selectors: Iterable[str], signatures: Iterable[str]) -> FrozenSet[str]:
        return subtract(selectors, signatures)

    def describe(self, interface: InterfaceDescription) -> Dict[str, str]:
        """Signature -> selector, for reporting."""
        out: Dict[str, str] = {}
        for sig in interface.signatures:
            if self.initializer and sig == canonical_signature(self.initializer):
                continue
            out[sig] = selector_of(sig)
        return out
