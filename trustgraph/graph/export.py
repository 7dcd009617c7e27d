# trustgraph/graph/export.py
"""
Export a (filtered) graph as JSON or CSV.
"""

import csv
import io
import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from .models import GraphData, GraphStats

CSV_HEADERS = ["pubkey", "name", "distance", "trust_score", "is_mutual"]


def export_filename(extension: str, now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    return f"wot-graph-{now.date().isoformat()}.{extension}"


def graph_to_export_dict(
    data: GraphData,
    stats: GraphStats,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """JSON-ready export document."""
    now = now or datetime.now(timezone.utc)
    return {
        "exported_at": now.isoformat(),
        "stats": stats.to_dict(),
        "nodes": [
            {
                "id": n.id,
                "label": n.label,
                "distance": n.distance,
                "trust_score": n.trust_score,
                "is_mutual": n.is_mutual,
            }
            for n in data.nodes
        ],
        "edges": [
            {"source": e.source, "target": e.target, "type": e.type.value}
            for e in data.links
        ],
    }


def export_json(data: GraphData, stats: GraphStats, now: Optional[datetime] = None) -> str:
    return json.dumps(graph_to_export_dict(data, stats, now), indent=2)


def export_csv(data: GraphData) -> str:
    """One row per node."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(CSV_HEADERS)
    for n in data.nodes:
        writer.writerow([
            n.id,
            n.label or "",
            n.distance,
            n.trust_score,
            "true" if n.is_mutual else "false",
        ])
    return buffer.getvalue()
