"""
Output Writer - JSONL sink for harvested jobs plus a Markdown digest
"""

import json
import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from models import JobRecord

logger = logging.getLogger(__name__)


class OutputWriter:
    """Appends one JSON object per job, in discovery order; safe to call from workers."""

    def __init__(self, jsonl_path: Path, markdown_path: Optional[Path] = None, title: str = "Jobs"):
        self.jsonl_path = Path(jsonl_path)
        self.markdown_path = Path(markdown_path) if markdown_path else None
        self.title = title
        self.written = 0
        self._lock = threading.Lock()
        self._ensure_output_dir(self.jsonl_path)

    @classmethod
    def from_config(cls, config) -> "OutputWriter":
        markdown_path = config.get_output_path('md') if config.is_markdown_enabled() else None
        return cls(config.get_output_path('jsonl'), markdown_path, title=config.get_source_label())

    def _ensure_output_dir(self, path: Path) -> None:
        """Create output directory if it doesn't exist"""
        path.parent.mkdir(parents=True, exist_ok=True)

    def _escape_md_cell(self, value: str) -> str:
        return (value or "").replace("|", "\\|").replace("\n", " ").strip()

    def _truncate(self, text: str, max_len: int) -> str:
        value = (text or "").strip()
        if len(value) <= max_len:
            return value
        return value[: max_len - 3].rstrip() + "..."

    def append(self, record: JobRecord) -> None:
        line = json.dumps(record.to_row(), ensure_ascii=False)
        with self._lock:
            with open(self.jsonl_path, 'a', encoding='utf-8') as f:
                f.write(line + "\n")
            self.written += 1

    def read_records(self) -> List[JobRecord]:
        if not self.jsonl_path.exists():
            return []
        records = []
        with open(self.jsonl_path, 'r', encoding='utf-8') as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    records.append(JobRecord.model_validate_json(line))
                except ValueError:
                    logger.warning("Skipping invalid output line in %s", self.jsonl_path)
        return records

    def _details_grid_table(self, jobs: List[JobRecord]) -> List[str]:
        cols = ["#", "Title", "Company", "Location", "Salary", "Job Type", "Posted"]
        lines = [
            "| " + " | ".join(cols) + " |",
            "| " + " | ".join(["---"] * len(cols)) + " |",
        ]
        for i, job in enumerate(jobs, 1):
            title = self._escape_md_cell(self._truncate(job.title or "-", 80))
            row = [
                str(i),
                f"[{title}]({job.url})",
                self._escape_md_cell(job.company or "Unknown Company"),
                self._escape_md_cell(job.location or "-"),
                self._escape_md_cell(job.salary or "-"),
                self._escape_md_cell(job.job_type or "-"),
                self._escape_md_cell(job.date_posted or "-"),
            ]
            lines.append("| " + " | ".join(row) + " |")
        lines.append("")
        return lines

    def write_markdown(self, search_label: str = "") -> Optional[Path]:
        """Render the digest from what the JSONL file holds now"""
        if self.markdown_path is None:
            return None
        self._ensure_output_dir(self.markdown_path)
        jobs = self.read_records()

        timestamp = datetime.now().strftime('%Y-%m-%d %H:%M')
        lines = [f"# {self.title} Jobs - {timestamp}\n"]
        lines.append(f"**Total Jobs:** {len(jobs)}  ")
        if search_label:
            lines.append(f"**Search:** {search_label}  ")
        lines.append(f"**Data:** `{self.jsonl_path}`\n")
        lines.append("---\n")
        lines.append("## Job Listings\n")

        if not jobs:
            lines.append("*No jobs found.*\n")
        for i, job in enumerate(jobs, 1):
            lines.append(f"### {i}. {job.title or job.url}\n")
            lines.append(f"**Company:** {job.company or 'Unknown Company'}  ")
            lines.append(f"**Location:** {job.location or '-'}  ")
            if job.salary:
                lines.append(f"**Salary:** {job.salary}  ")
            if job.job_type:
                lines.append(f"**Job Type:** {job.job_type}  ")
            if job.date_posted:
                lines.append(f"**Posted:** {job.date_posted}  ")
            lines.append(f"**Link:** [{job.title or 'offer'}]({job.url})\n")
            if job.description_text:
                lines.append(f"> {self._truncate(job.description_text, 300)}\n")
            lines.append("")

        lines.append("---\n")
        lines.append("## Job Details Grid\n")
        lines.extend(self._details_grid_table(jobs))

        with open(self.markdown_path, 'w', encoding='utf-8') as f:
            f.write('\n'.join(lines))

        logger.info("Markdown written: %s", self.markdown_path)
        return self.markdown_path
