from pathlib import Path
from typing import Optional

from jinja2 import Environment, FileSystemLoader

from .models import SyncReport
from .storage import now_utc

TEMPLATE_DIR = Path(__file__).resolve().parent / "templates"
env = Environment(
    loader=FileSystemLoader(str(TEMPLATE_DIR)),
    trim_blocks=True,
    lstrip_blocks=True,
)


def build_trigger_message(success: bool, total_count: Optional[int], error: Optional[str] = None) -> str:
    if success:
        return f"Products synced successfully! Total products: {total_count}"
    return f"Error syncing products: {error or 'unknown error'}"


def build_plaintext_summary(report: Optional[SyncReport], error: Optional[str] = None) -> str:
    template = env.get_template("sync_summary.txt")

    finished = report.finished_at if report and report.finished_at else now_utc()
    ctx = {
        "status": "failed" if error else "succeeded",
        "finished_at": finished.strftime("%Y-%m-%d %H:%M:%S %Z"),
        "error": error,
        "report": report,
        "duration": f"{report.duration_seconds:.1f}s" if report else "",
    }
    return template.render(**ctx)
