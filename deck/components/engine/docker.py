# deck/components/engine/docker.py
"""
Docker variant of the container engine adapter.
"""
import json
from typing import Dict, List

from deck.components.engine.base import (
    ContainerEngine,
    ContainerRecord,
    parse_host_ports,
    parse_timestamp,
    status_from_state,
)


def _parse_labels(value) -> Dict[str, str]:
    """Docker ps reports labels as a single ``k=v,k2=v2`` string."""
    if isinstance(value, dict):
        return value
    labels: Dict[str, str] = {}
    for pair in (value or "").split(","):
        if "=" in pair:
            key, _, val = pair.partition("=")
            labels[key.strip()] = val.strip()
    return labels


class DockerEngine(ContainerEngine):
    """Docker engine; ``ps --format json`` emits one JSON object per line."""

    name = "docker"
    binary = "docker"

    def _parse_list(self, output: str) -> List[ContainerRecord]:
        containers = []
        for line in output.splitlines():
            line = line.strip()
            if not line:
                continue
            try:
                item = json.loads(line)
            except json.JSONDecodeError as e:
                self._logger.error(f"Error parsing container JSON: {e}")
                continue
            names = item.get("Names", "")
            containers.append(ContainerRecord(
                id=item.get("ID", ""),
                name=names.split(",")[0] if isinstance(names, str) else names[0],
                image=item.get("Image", ""),
                status=status_from_state(item.get("State")),
                state=item.get("State", ""),
                ports=parse_host_ports(item.get("Ports")),
                labels=_parse_labels(item.get("Labels")),
                created=parse_timestamp(item.get("CreatedAt")),
            ))
        return containers
