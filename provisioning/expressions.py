"""Expressions that may appear in module node parameters and template outputs.

Node parameters are plain Python values (str, int, bool, mappings, lists)
that may embed:

- ``OutputRef``: the output of another node, ``<node>.outputs.<key>``
- ``Format``: a string template whose arguments are resolved before formatting

Modules return their outputs as plain values, ``ResourceAttr`` placeholders
filled from the control plane response, or ``SecretReference`` pointers into a
vault.
"""
from typing import Any, Iterator, Mapping

from attrs import define, field
from attrs.validators import instance_of, min_len

import common.constants as constants

_OUTPUTS_SEGMENT = "outputs"


@define(slots=True, frozen=True)
class OutputRef:
    node: str = field(validator=[instance_of(str), min_len(1)])
    key: str = field(validator=[instance_of(str), min_len(1)])

    def __str__(self) -> str:
        return f"{self.node}.{_OUTPUTS_SEGMENT}.{self.key}"


def ref(path: str) -> OutputRef:
    """Parse ``<node>.outputs.<key>`` into an OutputRef."""
    parts = path.split(".")
    if len(parts) != 3 or parts[1] != _OUTPUTS_SEGMENT or not all(parts):
        raise ValueError(f"Invalid output reference '{path}', expected <node>.outputs.<key>")
    return OutputRef(node=parts[0], key=parts[2])


@define(slots=True, frozen=True, init=False)
class Format:
    template: str
    args: tuple

    def __init__(self, template: str, *args: Any) -> None:
        self.__attrs_init__(template, tuple(args))


@define(slots=True, frozen=True)
class ResourceAttr:
    name: str = field(validator=[instance_of(str), min_len(1)])


@define(slots=True, frozen=True)
class SecretReference:
    vault_name: str = field(validator=[instance_of(str), min_len(1)])
    secret_name: str = field(validator=[instance_of(str), min_len(1)])

    @property
    def uri(self) -> str:
        return constants.KEY_VAULT_SECRET_URI.format(
            vault_name=self.vault_name, secret_name=self.secret_name
        )

    def __str__(self) -> str:
        return f"@Microsoft.KeyVault(SecretUri={self.uri})"


def iter_references(value: Any) -> Iterator[OutputRef]:
    """Statically scan a parameter value for output references."""
    if isinstance(value, OutputRef):
        yield value
    elif isinstance(value, Format):
        for arg in value.args:
            yield from iter_references(arg)
    elif isinstance(value, Mapping):
        for item in value.values():
            yield from iter_references(item)
    elif isinstance(value, (list, tuple, set, frozenset)):
        for item in value:
            yield from iter_references(item)


def render(value: Any) -> Any:
    """Render a value for the plan representation; references stay symbolic."""
    if isinstance(value, OutputRef):
        return f"${{{value}}}"
    if isinstance(value, Format):
        return value.template.format(*(render(arg) for arg in value.args))
    if isinstance(value, SecretReference):
        return str(value)
    if isinstance(value, Mapping):
        return {key: render(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [render(item) for item in value]
    return value
