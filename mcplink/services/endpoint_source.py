# -*- coding: utf-8 -*-
"""Location: ./mcplink/services/endpoint_source.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0
Authors: Mihai Criveti

Endpoint sources.

The core never owns server configuration; it reads records from a source.
:class:`EndpointSource` is the read-only interface a persistence layer
implements. Two implementations ship here: :class:`StaticEndpointSource`
for records built in code, and :class:`YamlEndpointSource` for a backends
file used by the gateway server.

Two YAML layouts are accepted::

    backends:
      - id: time
        type: stdio
        command: uvx
        args: [mcp-server-time]
      - id: docs
        type: streamable-http
        url: https://docs.example.com/mcp
        headers:
          Authorization: Bearer ${DOCS_TOKEN}

    mcpServers:
      time:
        command: uvx
        args: [mcp-server-time]
      docs:
        type: sse
        url: https://docs.example.com/sse

``${VAR}`` references in header and env values are expanded from the
process environment.
"""

# Standard
from dataclasses import dataclass
import os
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol, Union

# Third-Party
from pydantic import ValidationError
import yaml

# First-Party
from mcplink.schemas import ServerEndpoint


@dataclass(frozen=True)
class BackendRecord:
    """One configured backend server."""

    backend_id: str
    endpoint: ServerEndpoint
    prefix: Optional[str] = None
    enabled: bool = True


class EndpointSource(Protocol):
    """Read-only provider of backend records."""

    def load(self) -> List[BackendRecord]:
        """Return every configured backend.

        Returns:
            The records, in configuration order.
        """
        ...  # pylint: disable=unnecessary-ellipsis


class StaticEndpointSource:
    """Endpoint source over an in-memory list.

    Examples:
        >>> rec = BackendRecord("time", ServerEndpoint(kind="stdio", command="uvx"))
        >>> [r.backend_id for r in StaticEndpointSource([rec]).load()]
        ['time']
    """

    def __init__(self, records: Iterable[BackendRecord]):
        """Initialize the source.

        Args:
            records: Records to serve.
        """
        self._records = list(records)

    def load(self) -> List[BackendRecord]:
        """Return the records.

        Returns:
            A copy of the record list.
        """
        return list(self._records)


def _expand(values: Optional[Mapping[str, Any]]) -> Dict[str, str]:
    """Expand ``${VAR}`` references in mapping values.

    Args:
        values: Mapping from the YAML file.

    Returns:
        New mapping of strings.
    """
    return {str(k): os.path.expandvars(str(v)) for k, v in (values or {}).items()}


def parse_backend_entry(backend_id: str, entry: Mapping[str, Any]) -> BackendRecord:
    """Build a record from one YAML entry.

    Entries without a ``type`` are stdio when they have a ``command`` and
    streamable HTTP when they have a ``url``.

    Args:
        backend_id: Backend identifier.
        entry: The entry mapping.

    Returns:
        BackendRecord: The parsed record.

    Raises:
        ValueError: If the entry is not a valid endpoint.

    Examples:
        >>> parse_backend_entry("docs", {"url": "http://localhost:9000/mcp"}).endpoint.kind.value
        'streamable-http'
        >>> parse_backend_entry("time", {"command": "uvx", "args": ["mcp-server-time"]}).endpoint.args
        ('mcp-server-time',)
    """
    if not isinstance(entry, Mapping):
        raise ValueError(f"backend '{backend_id}' must be a mapping")
    kind = entry.get("type") or entry.get("kind") or ("stdio" if entry.get("command") else "streamable-http")
    record = {
        "type": kind,
        "command": entry.get("command"),
        "args": [str(arg) for arg in entry.get("args") or []],
        "env": _expand(entry.get("env")),
        "url": entry.get("url"),
        "headers": _expand(entry.get("headers")),
    }
    try:
        endpoint = ServerEndpoint.from_record(record)
    except ValidationError as exc:
        raise ValueError(f"backend '{backend_id}': {exc.errors()[0]['msg']}") from exc
    return BackendRecord(backend_id=backend_id, endpoint=endpoint, prefix=entry.get("prefix"), enabled=bool(entry.get("enabled", True)))


class YamlEndpointSource:
    """Endpoint source backed by a YAML file."""

    def __init__(self, path: Union[str, Path]):
        """Initialize the source.

        Args:
            path: YAML file path.
        """
        self.path = Path(path)

    def load(self) -> List[BackendRecord]:
        """Read and validate the file. Disabled backends are left out.

        Returns:
            The enabled records.

        Raises:
            FileNotFoundError: If the file does not exist.
            ValueError: If the file is malformed.
        """
        if not self.path.exists():
            raise FileNotFoundError(f"Backends file not found: {self.path}")

        with open(self.path, encoding="utf-8") as f:
            try:
                data = yaml.safe_load(f) or {}
            except yaml.YAMLError as exc:
                raise ValueError(f"Invalid YAML in {self.path}: {exc}") from exc

        if not isinstance(data, Mapping):
            raise ValueError(f"{self.path}: top level must be a mapping")

        records: List[BackendRecord] = []
        if "backends" in data:
            entries = data.get("backends") or []
            if not isinstance(entries, list):
                raise ValueError(f"{self.path}: 'backends' must be a list")
            for index, entry in enumerate(entries):
                backend_id = (entry.get("id") or entry.get("name")) if isinstance(entry, Mapping) else None
                if not backend_id:
                    raise ValueError(f"{self.path}: backend #{index + 1} has no id")
                records.append(parse_backend_entry(str(backend_id), entry))
        elif "mcpServers" in data:
            servers = data.get("mcpServers") or {}
            if not isinstance(servers, Mapping):
                raise ValueError(f"{self.path}: 'mcpServers' must be a mapping")
            for backend_id, entry in servers.items():
                records.append(parse_backend_entry(str(backend_id), entry))
        else:
            raise ValueError(f"{self.path}: expected a 'backends' list or an 'mcpServers' mapping")

        return [record for record in records if record.enabled]
