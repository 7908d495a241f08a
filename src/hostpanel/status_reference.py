"""Central lifecycle status reference used by help/status reporting."""

from __future__ import annotations

from typing import Any

STATUS_REFERENCE_SCHEMA = "status_reference_v1"

ENTITY_STATUS_LIFECYCLE = [
    {
        "status": "toadd",
        "meaning": "Entity created by the panel; artifacts not yet materialized.",
        "typical_transitions": ["ok", "<error text>"],
    },
    {
        "status": "tochange",
        "meaning": "Stored settings changed; artifacts must be regenerated.",
        "typical_transitions": ["ok", "<error text>"],
    },
    {
        "status": "tochangepwd",
        "meaning": "Only credentials changed; rotate them without regenerating artifacts.",
        "typical_transitions": ["ok", "<error text>"],
    },
    {
        "status": "toenable",
        "meaning": "Disabled entity must resume service.",
        "typical_transitions": ["ok", "<error text>"],
    },
    {
        "status": "todisable",
        "meaning": "Suspend externally visible service, keep configuration.",
        "typical_transitions": ["disabled", "<error text>"],
    },
    {
        "status": "torestore",
        "meaning": "Recover artifacts from a previous state or backup.",
        "typical_transitions": ["ok", "<error text>"],
    },
    {
        "status": "todelete",
        "meaning": "Remove every artifact; the row disappears once this succeeds.",
        "typical_transitions": ["<row removed>", "<error text>"],
    },
    {
        "status": "ok",
        "meaning": "Artifacts match the stored desired state; terminal success.",
        "typical_transitions": [],
    },
    {
        "status": "disabled",
        "meaning": "Service suspended; terminal until re-enabled by the panel.",
        "typical_transitions": [],
    },
    {
        "status": "<error text>",
        "meaning": (
            "Last run failed; the diagnostic is stored in place of the status. "
            "Never retried automatically: requeue it with 'hostpanel requeue'."
        ),
        "typical_transitions": [],
    },
]

STATUS_LIFECYCLES = [
    {
        "type": "entity",
        "label": "Entity lifecycle",
        "description": "Statuses shared by every provisionable entity table.",
        "statuses": ENTITY_STATUS_LIFECYCLE,
    },
]


def get_status_reference() -> dict[str, Any]:
    """Return a machine-parseable lifecycle reference payload."""
    return {
        "schema": STATUS_REFERENCE_SCHEMA,
        "lifecycles": [
            {
                "type": lifecycle["type"],
                "label": lifecycle["label"],
                "description": lifecycle["description"],
                "statuses": [
                    {
                        "status": status["status"],
                        "meaning": status["meaning"],
                        "typical_transitions": list(status["typical_transitions"]),
                    }
                    for status in lifecycle["statuses"]
                ],
            }
            for lifecycle in STATUS_LIFECYCLES
        ],
    }
