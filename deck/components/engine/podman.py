# deck/components/engine/podman.py
"""
Podman variant of the container engine adapter.
"""
import json
from typing import List

from deck.components.engine.base import (
    ContainerEngine,
    ContainerRecord,
    parse_host_ports,
    parse_timestamp,
    status_from_state,
)


class PodmanEngine(ContainerEngine):
    """Podman engine; ``ps --format json`` emits a single JSON array."""

    name = "podman"
    binary = "podman"

    def _parse_list(self, output: str) -> List[ContainerRecord]:
        try:
            items = json.loads(output or "[]")
        except json.JSONDecodeError as e:
            self._logger.error(f"Error parsing podman ps output: {e}")
            return []

        containers = []
        for item in items or []:
            names = item.get("Names") or [""]
            containers.append(ContainerRecord(
                id=item.get("Id", ""),
                name=names[0] if isinstance(names, list) else str(names),
                image=item.get("Image", ""),
                status=status_from_state(item.get("State")),
                state=item.get("State", ""),
                ports=parse_host_ports(item.get("Ports")),
                labels=item.get("Labels") or {},
                created=parse_timestamp(item.get("Created") or item.get("CreatedAt")),
            ))
        return containers
