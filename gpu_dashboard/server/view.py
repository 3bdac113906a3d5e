"""Server-side rendering of the dashboard page."""

from __future__ import annotations

from html import escape
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

from ..data.formatting import format_percentage, format_relative_time
from ..data.table import COLUMNS, SortState, TablePage, render_cells

STYLE = """
body{font-family:system-ui,sans-serif;margin:0;background:#0f1115;color:#e6e6e6}
.container{max-width:1200px;margin:0 auto;padding:24px}
header{display:flex;justify-content:space-between;align-items:center;gap:16px}
h1{margin:0;font-size:28px}.muted{color:#9aa0a6;font-size:13px}
.controls{display:flex;gap:12px;align-items:center}.controls form{margin:0}
button{background:#1f2430;color:#e6e6e6;border:1px solid #3a4150;border-radius:6px;padding:6px 12px;cursor:pointer}
button.on{background:#2d6cdf;border-color:#2d6cdf}
.cards{display:grid;grid-template-columns:repeat(4,1fr);gap:16px;margin:24px 0}
.card{background:#171a21;border:1px solid #262b36;border-radius:8px;padding:16px}
.card .value{font-size:26px;font-weight:700}
table{width:100%;border-collapse:collapse;background:#171a21;border-radius:8px}
th,td{padding:10px 12px;text-align:left;border-bottom:1px solid #262b36;font-size:14px}
th a{color:inherit;text-decoration:none}
.green{color:#22c55e}.yellow{color:#eab308}.red{color:#ef4444}
.bar{display:inline-block;width:64px;height:8px;background:#262b36;border-radius:4px;margin-right:8px;vertical-align:middle}
.bar span{display:block;height:8px;border-radius:4px}
.bar-green{background:#22c55e}.bar-yellow{background:#eab308}.bar-red{background:#ef4444}
.panel{background:#171a21;border:1px solid #262b36;border-radius:8px;padding:24px;text-align:center}
.panel.error{color:#ef4444}.pager{display:flex;justify-content:space-between;margin-top:12px}
.pager a{color:#8ab4f8}
"""

SORT_MARKERS = {"asc": " ▲", "desc": " ▼"}


def _href(prefix: str, params: Dict[str, Any]) -> str:
    query = urlencode({k: v for k, v in params.items() if v not in (None, "")})
    return f"{prefix}/?{query}" if query else f"{prefix}/"


def _base_params(page: TablePage) -> Dict[str, Any]:
    return {
        "sort": page.sort.column,
        "order": page.sort.direction.value if page.sort.direction else None,
        "q": page.filters.query,
        "version": page.version,
    }


def render_header(snapshot: Dict[str, Any], title: str, subtitle: str, prefix: str) -> str:
    connected = snapshot["health"]["connected"]
    health_html = (
        '<span class="green">● Connected</span>' if connected else '<span class="red">● Connection error</span>'
    )
    auto = snapshot["auto_refresh"]
    metrics = snapshot["metrics"]
    updated = (
        f"Updated {escape(format_relative_time(metrics['updated_at']))}" if metrics.get("updated_at") else "Not loaded yet"
    )
    # Disabled only while the first load is outstanding
    busy = " disabled" if metrics["status"] == "loading" and metrics.get("is_fetching") else ""
    return f"""
<header>
  <div>
    <h1>{escape(title)}</h1>
    <div class="muted">{escape(subtitle)} · {updated}</div>
  </div>
  <div class="controls">
    {health_html}
    <form method="post" action="{prefix}/api/auto-refresh">
      <input type="hidden" name="enabled" value="{'false' if auto else 'true'}">
      <button class="{'on' if auto else ''}" type="submit">Auto-refresh {'ON' if auto else 'OFF'}</button>
    </form>
    <form method="post" action="{prefix}/api/refresh">
      <button type="submit"{busy}>Refresh</button>
    </form>
  </div>
</header>"""


def render_stats(stats: Optional[Dict[str, Any]]) -> str:
    if not stats:
        return ""
    high_temp_tone = "red" if stats["high_temp_gpus"] > 0 else "green"
    cards = [
        ("Total GPUs", str(stats["total_gpus"]), f"In use: {stats['active_gpus']}", ""),
        ("Average utilization", format_percentage(stats["average_utilization"]), "Across all GPUs", ""),
        ("High temperature", str(stats["high_temp_gpus"]), "Above 80°C", high_temp_tone),
        ("Active ratio", format_percentage(stats["active_ratio"] * 100), "GPUs in use", ""),
    ]
    body = "".join(
        f'<div class="card"><div class="muted">{escape(label)}</div>'
        f'<div class="value {tone}">{escape(value)}</div>'
        f'<div class="muted">{escape(note)}</div></div>'
        for label, value, note, tone in cards
    )
    return f'<section class="cards">{body}</section>'


def render_table(snapshot: Dict[str, Any], page: TablePage, prefix: str) -> str:
    metrics = snapshot["metrics"]
    if metrics["status"] == "error":
        message = (metrics.get("error") or {}).get("message") or "Unknown error"
        return (
            '<section class="panel error"><p><strong>An error occurred</strong></p>'
            f"<p>{escape(message)}</p></section>"
        )

    params = _base_params(page)
    head_cells: List[str] = []
    for column in COLUMNS:
        next_sort: SortState = page.sort.toggled(column.id)
        href = _href(prefix, {
            **params,
            "sort": next_sort.column,
            "order": next_sort.direction.value if next_sort.direction else None,
            "page": None,
        })
        marker = ""
        if page.sort.column == column.id and page.sort.direction:
            marker = SORT_MARKERS[page.sort.direction.value]
        head_cells.append(f'<th><a href="{escape(href)}">{escape(column.header)}{marker}</a></th>')

    span = len(COLUMNS)
    if metrics["status"] == "loading":
        body = f'<tr><td colspan="{span}" class="muted">Loading...</td></tr>'
    elif not page.rows:
        notice = metrics.get("envelope_error")
        text = f"No data ({escape(notice)})" if notice else "No data"
        body = f'<tr><td colspan="{span}" class="muted">{text}</td></tr>'
    else:
        body = "".join(_render_row(row) for row in page.rows)

    pager = ""
    if page.page_count > 1:
        prev_link = (
            f'<a href="{escape(_href(prefix, {**params, "page": page.page_index - 1}))}">← Previous</a>'
            if page.has_previous else "<span></span>"
        )
        next_link = (
            f'<a href="{escape(_href(prefix, {**params, "page": page.page_index + 1}))}">Next →</a>'
            if page.has_next else "<span></span>"
        )
        pager = (
            f'<div class="pager">{prev_link}'
            f'<span class="muted">Page {page.page_index + 1} of {page.page_count}</span>{next_link}</div>'
        )

    search = (
        f'<form method="get" action="{prefix}/" style="margin-bottom:12px">'
        f'<input type="search" name="q" value="{escape(page.filters.query)}" placeholder="Filter rows">'
        f'<button type="submit">Filter</button></form>'
    )
    return (
        f"<section>{search}<table><thead><tr>{''.join(head_cells)}</tr></thead>"
        f"<tbody>{body}</tbody></table>{pager}</section>"
    )


def _render_row(row) -> str:
    cells = []
    for cell in render_cells(row):
        text = escape(cell.text)
        if cell.bar:
            width = min(max(row.utilization, 0.0), 100.0)
            text = f'<span class="bar"><span class="{cell.bar}" style="width:{width:.0f}%"></span></span>{text}'
        tone = f' class="{cell.tone}"' if cell.tone else ""
        cells.append(f"<td{tone}>{text}</td>")
    return f"<tr>{''.join(cells)}</tr>"


def render_dashboard(
    snapshot: Dict[str, Any],
    page: TablePage,
    *,
    title: str,
    subtitle: str = "",
    url_prefix: str = "",
) -> str:
    """Render the full dashboard page.

    While auto-refresh is on the page reloads itself every metrics interval.
    """
    prefix = (url_prefix or "").rstrip("/")
    reload_meta = ""
    if snapshot.get("auto_refresh"):
        reload_meta = f'<meta http-equiv="refresh" content="{int(snapshot.get("metrics_interval", 30))}">'
    return f"""<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="utf-8">
{reload_meta}
<title>{escape(title)}</title>
<style>{STYLE}</style>
</head>
<body>
<div class="container">
{render_header(snapshot, title, subtitle, prefix)}
{render_stats(snapshot.get("stats"))}
{render_table(snapshot, page, prefix)}
</div>
</body>
</html>
"""
