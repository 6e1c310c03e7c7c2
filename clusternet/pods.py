"""Look up pods by label and read parameters from their container commands."""

from __future__ import annotations

from typing import Any

from clusternet.kube import MemoryClient, parse_label_selector

_POD_KIND = "Pod"


def find_pod(client: MemoryClient, label_selector: str) -> dict[str, Any] | None:
    """Return the first pod in any namespace matching the selector, or None."""
    try:
        selector = parse_label_selector(label_selector)
    except ValueError as exc:
        raise ValueError(f'error parsing label selector "{label_selector}": {exc}') from exc

    pods = client.list(_POD_KIND, None, selector)
    return pods[0] if pods else None


def _value_of(argument: str) -> str:
    name, separator, value = argument.partition("=")
    if not separator:
        raise ValueError(f'command parameter "{argument}" has no value')
    return value


def _command_arguments(pod: dict[str, Any]):
    for container in (pod.get("spec") or {}).get("containers") or []:
        yield from container.get("command") or []


def find_pod_command_parameter(client: MemoryClient, label_selector: str, parameter: str) -> str:
    """Return the value of a ``parameter=value`` command argument of the first matching pod.

    Arguments of the form ``/bin/sh -c "exec ..."`` are split on spaces and searched too.
    An empty string is returned when no pod or no such parameter is found.
    """
    pod = find_pod(client, label_selector)
    if pod is None:
        return ""

    for argument in _command_arguments(pod):
        if argument.startswith(parameter):
            return _value_of(argument)
        if " " in argument:
            for sub_argument in argument.split(" "):
                if sub_argument.startswith(parameter):
                    return _value_of(sub_argument)

    return ""