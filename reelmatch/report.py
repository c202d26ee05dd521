"""Generate human-readable enrichment reports."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from .paths import ensure_dir, state_dir
from .util import redact_payload


def render_report(data: dict[str, Any]) -> str:
    run_id = data.get("run_id") or "unknown"
    matches = data.get("matches", []) or []
    errors = data.get("errors", []) or []
    lines = []
    lines.append(f"# reelmatch Enrichment Report ({run_id})")
    lines.append("")
    lines.append(f"Generated: {datetime.now(timezone.utc).isoformat()}")
    lines.append("")
    lines.append("## Summary")
    lines.append(f"- processed: {data.get('processed', 0)}")
    lines.append(f"- matched: {data.get('matched', 0)}")
    lines.append(f"- failed: {data.get('failed', 0)}")
    if data.get("skipped"):
        lines.append(f"- below min confidence: {data.get('skipped')}")
    if data.get("dry_run"):
        lines.append("- dry run: nothing was saved")
    if data.get("aborted"):
        lines.append("- aborted: yes")
    lines.append("")
    if matches:
        lines.append("## Matched")
        for item in matches:
            year = f" ({item.get('year')})" if item.get("year") else ""
            lines.append(
                f"- {item.get('key')} -> {item.get('external_id')}: {item.get('title')}{year}"
                f" [{item.get('confidence')}]"
            )
        lines.append("")
    if errors:
        lines.append("## Errors")
        for err in errors:
            lines.append(f"- {err.get('key', 'unknown')}: {err.get('code')} {err.get('message')}")
        hidden = int(data.get("error_count", 0) or 0) - len(errors)
        if hidden > 0:
            lines.append(f"- ... {hidden} more not shown")
        lines.append("")
    return "\n".join(lines)


def write_report(data: dict[str, Any], config: dict[str, Any], out_dir: Path | None = None) -> str | None:
    report_cfg = config.get("report", {}) or {}
    if not report_cfg.get("enabled"):
        return None
    run_id = data.get("run_id") or "unknown"
    configured = report_cfg.get("dir")
    base = out_dir or (Path(configured).expanduser() if configured else state_dir() / "reports")
    path = ensure_dir(base) / f"{run_id}.md"
    path.write_text(render_report(redact_payload(data)), encoding="utf-8")
    return str(path)
