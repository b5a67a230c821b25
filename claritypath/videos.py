"""Training video catalog and per-employee watch progress.

System videos (``company_id`` NULL) are shown to every company and are
read-only. Managers add their own videos, visible only to their company's
employees.
"""

from __future__ import annotations

import re
from typing import Dict, List, Optional, Tuple

from .db import log_action
from .utils import iso, to_int

YOUTUBE_ID_RE = re.compile(
    r"^https?://(?:www\.|m\.)?(?:youtube\.com/(?:watch\?(?:.*&)?v=|embed/|shorts/)|youtu\.be/)([A-Za-z0-9_-]{11})"
)
# Videos an employee or manager of a company can see.
VISIBLE_TO_COMPANY = "(v.company_id IS NULL OR v.company_id = ?)"
MAX_TITLE = 200
MAX_DESCRIPTION = 2000


def extract_youtube_id(url: str) -> str:
    match = YOUTUBE_ID_RE.match((url or "").strip())
    return match.group(1) if match else ""


def active_videos(conn) -> List[Dict[str, object]]:
    rows = conn.execute("SELECT * FROM videos WHERE is_active = 1 AND company_id IS NULL ORDER BY position, id").fetchall()
    return [dict(row) for row in rows]


def list_company_videos(conn, company_id: int) -> List[Dict[str, object]]:
    """System videos plus the company's own, active or not, for the manager."""
    rows = conn.execute(
        f"""
        SELECT v.*,
               (SELECT COUNT(*) FROM video_progress vp
                  JOIN employees e ON e.id = vp.employee_id
                 WHERE vp.video_id = v.id AND vp.completed = 1 AND e.company_id = ?) AS watched_by
        FROM videos v
        WHERE {VISIBLE_TO_COMPANY} AND (v.is_active = 1 OR v.company_id IS NOT NULL)
        ORDER BY v.position, v.id
        """,
        (company_id, company_id),
    ).fetchall()
    out = []
    for row in rows:
        item = dict(row)
        item["editable"] = item["company_id"] is not None
        out.append(item)
    return out


def videos_with_progress(conn, employee_id: int) -> List[Dict[str, object]]:
    rows = conn.execute(
        f"""
        SELECT v.*, COALESCE(vp.completed, 0) AS completed, vp.completed_at
        FROM videos v
        LEFT JOIN video_progress vp ON vp.video_id = v.id AND vp.employee_id = ?
        WHERE v.is_active = 1 AND {VISIBLE_TO_COMPANY}
        ORDER BY v.position, v.id
        """,
        (employee_id, _company_of(conn, employee_id)),
    ).fetchall()
    out = []
    for row in rows:
        item = dict(row)
        item["is_watched"] = bool(item.pop("completed"))
        out.append(item)
    return out


def _company_of(conn, employee_id: int) -> Optional[int]:
    row = conn.execute("SELECT company_id FROM employees WHERE id = ?", (employee_id,)).fetchone()
    return int(row["company_id"]) if row else None


def mark_progress(conn, employee_id: int, video_id: object, completed: bool = True):
    """Upsert one progress row. Returns (ok, message)."""
    vid = to_int(video_id)
    if vid is None:
        return False, "video_id é obrigatório"
    found = conn.execute(
        f"SELECT v.id FROM videos v WHERE v.id = ? AND v.is_active = 1 AND {VISIBLE_TO_COMPANY}",
        (vid, _company_of(conn, employee_id)),
    ).fetchone()
    if not found:
        return False, "Vídeo não encontrado"
    now = iso()
    conn.execute(
        """
        INSERT INTO video_progress (employee_id, video_id, completed, completed_at, updated_at)
        VALUES (?, ?, ?, ?, ?)
        ON CONFLICT (employee_id, video_id)
        DO UPDATE SET completed = excluded.completed, completed_at = excluded.completed_at, updated_at = excluded.updated_at
        """,
        (employee_id, vid, 1 if completed else 0, now if completed else None, now),
    )
    return True, "Progresso salvo"


def watched_count(conn, employee_id: int) -> int:
    row = conn.execute(
        """
        SELECT COUNT(*) FROM video_progress vp
        JOIN videos v ON v.id = vp.video_id
        WHERE vp.employee_id = ? AND vp.completed = 1 AND v.is_active = 1
        """,
        (employee_id,),
    ).fetchone()
    return int(row[0] or 0) if row else 0


def _clean_video(payload: Dict[str, object], current: Optional[Dict[str, object]] = None) -> Tuple[Dict[str, object], str]:
    """Validate create/update input. On update, absent keys keep ``current`` values."""
    current = current or {}

    def pick(key: str) -> object:
        return payload[key] if key in payload else current.get(key)

    title = str(pick("title") or "").strip()
    if not title:
        return {}, "Título é obrigatório"
    url = str(pick("video_url") or "").strip()
    if not url:
        return {}, "URL do vídeo é obrigatória"
    if not url.lower().startswith(("https://", "http://")):
        return {}, "URL do vídeo deve começar com http:// ou https://"
    raw_duration = pick("duration_seconds")
    duration = 0 if raw_duration in (None, "") else to_int(raw_duration)
    if duration is None or duration < 0:
        return {}, "Duração inválida"
    raw_position = pick("position")
    position = 0 if raw_position in (None, "") else to_int(raw_position)
    if position is None:
        return {}, "Posição inválida"
    active = pick("is_active")
    is_active = 1 if active is None else (0 if str(active).lower() in {"0", "false", "off", ""} else 1)
    return {
        "title": title[:MAX_TITLE],
        "video_url": url,
        "youtube_id": extract_youtube_id(url),
        "description": (str(pick("description") or "").strip()[:MAX_DESCRIPTION]) or None,
        "duration_seconds": duration,
        "position": position,
        "is_active": is_active,
    }, ""


def create_video(conn, company_id: int, actor_id: Optional[int], payload: Dict[str, object]) -> Tuple[Optional[int], str]:
    fields, error = _clean_video(payload)
    if error:
        return None, error
    if payload.get("position") in (None, ""):
        row = conn.execute(
            "SELECT COALESCE(MAX(position), 0) FROM videos v WHERE " + VISIBLE_TO_COMPANY,
            (company_id,),
        ).fetchone()
        fields["position"] = int(row[0] or 0) + 1
    cur = conn.execute(
        """
        INSERT INTO videos
            (company_id, title, youtube_id, video_url, description, duration_seconds, position, is_active, created_by_type, created_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, 'company', ?)
        """,
        (
            company_id,
            fields["title"],
            fields["youtube_id"],
            fields["video_url"],
            fields["description"],
            fields["duration_seconds"],
            fields["position"],
            fields["is_active"],
            iso(),
        ),
    )
    video_id = int(cur.lastrowid)
    log_action(conn, company_id, actor_id, "video.created", "videos", video_id, fields["title"])
    return video_id, ""


def _owned_video(conn, company_id: int, video_id: int) -> Tuple[Optional[Dict[str, object]], str]:
    row = conn.execute(f"SELECT * FROM videos v WHERE v.id = ? AND {VISIBLE_TO_COMPANY}", (video_id, company_id)).fetchone()
    if not row:
        return None, "Vídeo não encontrado"
    if row["company_id"] is None:
        return None, "Vídeos do sistema não podem ser alterados"
    return dict(row), ""


def update_video(conn, company_id: int, video_id: int, payload: Dict[str, object], actor_id: Optional[int] = None) -> Tuple[bool, str]:
    current, error = _owned_video(conn, company_id, video_id)
    if error:
        return False, error
    fields, error = _clean_video(payload, current)
    if error:
        return False, error
    conn.execute(
        """
        UPDATE videos
        SET title = ?, youtube_id = ?, video_url = ?, description = ?, duration_seconds = ?, position = ?, is_active = ?
        WHERE id = ?
        """,
        (
            fields["title"],
            fields["youtube_id"],
            fields["video_url"],
            fields["description"],
            fields["duration_seconds"],
            fields["position"],
            fields["is_active"],
            video_id,
        ),
    )
    log_action(conn, company_id, actor_id, "video.updated", "videos", video_id, fields["title"])
    return True, "Vídeo atualizado"


def delete_video(conn, company_id: int, video_id: int, actor_id: Optional[int] = None) -> Tuple[bool, str]:
    current, error = _owned_video(conn, company_id, video_id)
    if error:
        return False, error
    # Watch progress goes with the video through ON DELETE CASCADE.
    conn.execute("DELETE FROM videos WHERE id = ?", (video_id,))
    log_action(conn, company_id, actor_id, "video.deleted", "videos", video_id, current["title"])
    return True, "Vídeo removido"
