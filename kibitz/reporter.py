import json
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from .logging_config import get_logger

logger = get_logger("reporter")

LATEST_NAME = "latest.json"


class TestReporter:
    """Persists run reports as JSON plus a plain-text summary"""
    __test__ = False

    def __init__(self, output_dir: str = "reports"):
        self.output_dir = Path(output_dir)

    def initialize(self) -> bool:
        self.output_dir.mkdir(parents=True, exist_ok=True)
        return True

    # ============================================================
    # WRITE
    # ============================================================

    def generate_report(self, report_data: Dict[str, Any]) -> Path:
        """Write the report payload; returns the JSON file path"""
        self.initialize()

        stamp = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
        json_path = self.output_dir / f"inspector-report-{stamp}.json"
        json_path.write_text(json.dumps(report_data, indent=2, ensure_ascii=False, default=str))

        text_path = json_path.with_suffix(".txt")
        text_path.write_text(render_text_report(report_data))

        self._update_latest(json_path)
        logger.info(f"Report saved to {json_path}")
        return json_path

    def _update_latest(self, json_path: Path) -> None:
        latest = self.output_dir / LATEST_NAME
        if latest.is_symlink() or latest.exists():
            latest.unlink()
        try:
            latest.symlink_to(json_path.name)
        except OSError:
            # Filesystems without symlink support get a copy instead
            latest.write_text(json_path.read_text())

    # ============================================================
    # READ
    # ============================================================

    def load_latest(self) -> Optional[Dict[str, Any]]:
        latest = self.output_dir / LATEST_NAME
        if not latest.exists():
            return None
        return json.loads(latest.read_text())

    def list_reports(self, limit: int = 10) -> List[Path]:
        """Most recent report files first"""
        reports = sorted(self.output_dir.glob("inspector-report-*.json"), reverse=True)
        return reports[:limit]


def load_report(report_file: Path) -> Dict[str, Any]:
    return json.loads(Path(report_file).read_text())


def render_text_report(report_data: Dict[str, Any]) -> str:
    """Human-readable digest of a report payload"""
    summary = report_data.get("summary", {})
    lines = ["=" * 70, "MCP INSPECTOR TEST REPORT", "=" * 70]
    lines.append(f"Generated: {report_data.get('timestamp', '?')}")
    lines.append(
        f"Servers: {summary.get('successfulServers', 0)}/{summary.get('totalServers', 0)} successful"
    )
    lines.append(
        f"Tests: {summary.get('passedTests', 0)}/{summary.get('totalTests', 0)} passed "
        f"({summary.get('successRate', 0)}%)"
    )

    for server in report_data.get("testResults", []):
        icon = "✅" if server.get("status") == "completed" else "❌"
        lines.append(f"\n{icon} {server.get('serverName', 'unnamed')} [{server.get('status', 'unknown')}]")

        for capability, cap in (server.get("capabilities") or {}).items():
            tests = cap.get("tests", [])
            passed = sum(1 for t in tests if t.get("status") == "success")
            lines.append(f"   {capability}: {passed}/{len(tests)} passed (expected {cap.get('expected', '?')})")
            for test in tests:
                if test.get("status") == "failed":
                    lines.append(f"     - {test.get('name')}: {test.get('error', 'failed')}")

        ping = server.get("ping")
        if ping:
            lines.append(f"   ping: {ping.get('status')} [{ping.get('responseTime', '?')} ms]")

        for error in server.get("errors", []):
            lines.append(f"   ! {error.get('type')}: {error.get('message')}")

    validation = report_data.get("validation")
    if validation:
        lines.append(
            f"\nValidation: {validation['summary']['errorCount']} errors, "
            f"{validation['summary']['warningCount']} warnings"
        )

    return "\n".join(lines) + "\n"
