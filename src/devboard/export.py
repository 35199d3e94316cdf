"""
Snapshot writer for home-screen widgets.
Serializes the aggregate snapshot to a JSON file. Secrets are never written.
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict

from .models import AggregateSnapshot

logger = logging.getLogger(__name__)

WIDGET_FILENAME = "widget.json"


class SnapshotWriter:
    """Handles writing snapshots to the local filesystem."""

    def __init__(self, output_dir: Path):
        """
        Initialize the writer.

        Args:
            output_dir: Directory to write the widget file to.
        """
        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)

    @staticmethod
    def to_payload(snapshot: AggregateSnapshot) -> Dict[str, Any]:
        """Convert a snapshot into the widget document."""
        services = {}
        for service, view in snapshot.services.items():
            services[service.value] = {
                "configured": view.has_credential,
                "status": view.status.value,
                "activity_count": view.digest.activity_count if view.digest else None,
                "last_activity_at": (
                    view.digest.last_activity_at.isoformat()
                    if view.digest and view.digest.last_activity_at
                    else None
                ),
                "error": view.error.user_message if view.error else None,
                "value": view.value.model_dump(mode="json") if view.value else None,
            }

        return {
            "generated_at": snapshot.generated_at.isoformat(),
            "is_refreshing": snapshot.is_refreshing,
            "total_activity_count": snapshot.total_activity_count,
            "services": services,
        }

    def write(self, snapshot: AggregateSnapshot) -> Path:
        """
        Write a snapshot atomically.

        Args:
            snapshot: Snapshot to write.

        Returns:
            Path to the written file.
        """
        output_path = self.output_dir / WIDGET_FILENAME
        tmp_path = output_path.with_suffix(".json.tmp")
        content = json.dumps(self.to_payload(snapshot), ensure_ascii=False, indent=2)
        tmp_path.write_text(content, encoding="utf-8")
        os.replace(tmp_path, output_path)

        logger.info(f"Saved {WIDGET_FILENAME} ({len(snapshot.services)} services)")
        return output_path
