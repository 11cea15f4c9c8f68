"""Known sidecars and how to shut each of them down.

Edit :func:`generate` to add or remove sidecar definitions.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum


class ActionType(StrEnum):
    EXEC = "exec"
    HTTP = "http"


@dataclass(frozen=True)
class ShutdownAction:
    """How to stop one sidecar container.

    ``EXEC`` runs ``command`` inside the container; ``HTTP`` sends
    ``method path`` to ``port`` on the Pod loopback through a port-forward.
    """

    type: ActionType
    command: tuple[str, ...] = ()
    method: str = "POST"
    path: str = ""
    port: int = 0

    @classmethod
    def exec(cls, command: str) -> ShutdownAction:
        return cls(type=ActionType.EXEC, command=tuple(command.split(" ")))

    @classmethod
    def http(cls, method: str, path: str, port: int) -> ShutdownAction:
        if not 0 < port < 65536:
            raise ValueError(f"Invalid port for HTTP shutdown action: {port}")
        return cls(type=ActionType.HTTP, method=method.upper(), path=path, port=port)

    def describe(self) -> str:
        if self.type is ActionType.EXEC:
            return " ".join(self.command)
        return f"{self.method} {self.path} at port {self.port}"


def generate() -> dict[str, ShutdownAction]:
    """Container name -> shutdown action."""
    return {
        "cloudsql-proxy": ShutdownAction.http("POST", "/quitquitquit", 9091),
        "vks-sidecar": ShutdownAction.exec("/bin/kill -s INT 1"),
        "istio-proxy": ShutdownAction.http("POST", "/quitquitquit", 15000),
        "linkerd-proxy": ShutdownAction.http("POST", "/shutdown", 4191),
    }


DEFAULT_ACTIONS: dict[str, ShutdownAction] = generate()
