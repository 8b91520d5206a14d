"""
Transcript archive - best-effort markdown dumps of finished conversations.

Written on reset and on the save-on-exit signal. A failed write is logged
and never propagated: archiving must not break a turn or a page unload.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from config import runtime_config

logger = logging.getLogger(__name__)

ROLE_HEADINGS = {
    "user": "## 👤 USER",
    "assistant": "## 🤖 ASSISTANT",
}


def render_transcript(transcript: List[Dict[str, Any]], started: Optional[datetime] = None) -> str:
    """Markdown rendering of a transcript, one section per message."""
    stamp = (started or datetime.now()).isoformat(timespec="seconds")
    lines = [f"# Conversation Log - {stamp}", ""]
    for message in transcript:
        role = str(message.get("role", "unknown"))
        lines.append(ROLE_HEADINGS.get(role, f"## {role.upper()}"))
        lines.append(str(message.get("content", "")))
        lines.append("")
    return "\n".join(lines)


class TranscriptArchive:
    """Writes transcripts to `<directory>/<yyyyMMdd_HHmmss>_<session>.md`."""

    def __init__(self, directory: Optional[str] = None):
        self.directory = Path(directory or runtime_config.history_dir)

    def save(self, session_id: str, transcript: List[Dict[str, Any]]) -> Optional[Path]:
        """
        Archive one transcript.

        Returns:
            Path of the written file, or None when there was nothing to write
            or the write failed
        """
        if not transcript:
            return None

        now = datetime.now()
        path = self.directory / f"{now.strftime('%Y%m%d_%H%M%S')}_{session_id[:8]}.md"
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            with open(path, "x", encoding="utf-8") as f:
                f.write(render_transcript(transcript, now))
        except FileExistsError:
            logger.warning(f"Archive already exists, skipping: {path}")
            return None
        except OSError as e:
            logger.error(f"Failed to archive transcript for {session_id[:8]}: {e}")
            return None

        logger.info(f"Transcript archived: {path} ({len(transcript)} messages)")
        return path
