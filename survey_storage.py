# -*- coding: utf-8 -*-
"""
File-level storage for the survey: the image pool on disk, one CSV folder per
participant, and a small SQLite index of votes for the admin dashboard.
"""

from __future__ import annotations
import csv, logging, sqlite3, time, uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Sequence

from pair_scheduler import Comparison

logger = logging.getLogger(__name__)

DEFAULT_EXTENSIONS = (".jpg", ".jpeg", ".png", ".webp")


# ---------------------------- Image pool ----------------------------

def list_images(images_dir: Path, extensions: Iterable[str] = DEFAULT_EXTENSIONS) -> List[str]:
    """File names (with extension) of every image directly under ``images_dir``, sorted."""
    if not images_dir.exists():
        return []
    allow = {e.lower() if e.startswith(".") else "." + e.lower() for e in extensions}
    files = [p.name for p in images_dir.iterdir() if p.is_file() and p.suffix.lower() in allow]
    return sorted(files, key=lambda s: (s.casefold(), s))


# ---------------------------- Per-participant CSVs ----------------------------

def write_background_csv(meta: Dict[str, Any], folder: Path) -> Path:
    path = folder / "background.csv"
    keys = list(meta.keys())
    with open(path, "w", encoding="utf-8", errors="surrogateescape", newline="") as f:
        w = csv.writer(f, quoting=csv.QUOTE_ALL)
        w.writerow(keys)
        w.writerow(["" if meta[k] is None else meta[k] for k in keys])
    return path


def write_votes_csv(comparisons: Sequence[Comparison], folder: Path) -> Path:
    """``id,choice,left,right`` with image names stripped of their extension."""
    path = folder / "votes.csv"
    stamp = int(time.time() * 1000)
    with open(path, "w", encoding="utf-8", errors="surrogateescape", newline="") as f:
        w = csv.writer(f, quoting=csv.QUOTE_ALL)
        w.writerow(["id", "choice", "left", "right"])
        for idx, c in enumerate(comparisons, start=1):
            w.writerow([f"vote_{idx}_{stamp}", c.choice, Path(c.left).stem, Path(c.right).stem])
    return path


def write_submission(results_dir: Path, meta: Dict[str, Any], comparisons: Sequence[Comparison]) -> Path:
    """Create ``participant_<timestamp>_<id>/`` holding background.csv and votes.csv."""
    ts = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H-%M-%S-%f")
    folder = results_dir / f"participant_{ts}_{uuid.uuid4().hex[:6]}"
    folder.mkdir(parents=True, exist_ok=False)
    write_background_csv(meta or {}, folder)
    write_votes_csv(comparisons, folder)
    logger.info("Saved %d comparison(s) to %s", len(comparisons), folder.name)
    return folder


# ---------------------------- Vote index (SQLite) ----------------------------

def connect(db_path: Path) -> sqlite3.Connection:
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    return conn


def init_db(db_path: Path):
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = connect(db_path); cur = conn.cursor()
    cur.execute("""
    CREATE TABLE IF NOT EXISTS participants(
      participant_id TEXT PRIMARY KEY,
      folder TEXT,
      meta_json TEXT,
      submitted_utc TEXT
    );""")
    cur.execute("""
    CREATE TABLE IF NOT EXISTS votes(
      id INTEGER PRIMARY KEY AUTOINCREMENT,
      participant_id TEXT,
      dimension TEXT, pair_index INTEGER,
      left_image TEXT, right_image TEXT, choice TEXT,
      submitted_utc TEXT
    );""")
    conn.commit(); conn.close()


def _db_text(name: str) -> str:
    # sqlite only takes valid UTF-8; undecodable file-name bytes become U+FFFD
    return name.encode("utf-8", "surrogateescape").decode("utf-8", "replace")


def index_submission(db_path: Path, participant_id: str, folder: str, meta_json: str,
                     comparisons: Sequence[Comparison]):
    now = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")
    conn = connect(db_path)
    try:
        with conn:
            conn.execute("INSERT INTO participants(participant_id, folder, meta_json, submitted_utc) VALUES(?,?,?,?)",
                         (participant_id, folder, meta_json, now))
            conn.executemany("""
                INSERT INTO votes(participant_id, dimension, pair_index, left_image, right_image, choice, submitted_utc)
                VALUES (?,?,?,?,?,?,?)
            """, [(participant_id, c.dimension, c.pair_index, _db_text(c.left), _db_text(c.right), c.choice, now) for c in comparisons])
    finally:
        conn.close()


def _fetchone_val(conn, sql, params=()):
    cur = conn.execute(sql, params); row = cur.fetchone()
    return (row[0] if row and len(row) else 0)

def _fetchall_dicts(conn, sql, params=()):
    cur = conn.execute(sql, params)
    cols = [d[0] for d in cur.description]
    return [dict(zip(cols, r)) for r in cur.fetchall()]


def vote_stats(db_path: Path, top: int = 10) -> dict:
    conn = connect(db_path)
    try:
        participants = _fetchone_val(conn, "SELECT COUNT(*) FROM participants")
        votes = _fetchone_val(conn, "SELECT COUNT(*) FROM votes")
        per_dim = _fetchall_dicts(conn, """
          SELECT dimension, COUNT(*) AS n,
                 SUM(CASE WHEN choice='' THEN 1 ELSE 0 END) AS skipped
          FROM votes GROUP BY dimension ORDER BY dimension
        """)
        # one row per (dimension, image) with how often it was shown and picked
        win_rates = _fetchall_dicts(conn, """
          SELECT dimension, image, COUNT(*) AS shown, SUM(won) AS wins,
                 ROUND(1.0 * SUM(won) / COUNT(*), 3) AS win_rate
          FROM (
            SELECT dimension, left_image AS image, CASE WHEN choice='left' THEN 1 ELSE 0 END AS won FROM votes
            UNION ALL
            SELECT dimension, right_image, CASE WHEN choice='right' THEN 1 ELSE 0 END FROM votes
          )
          GROUP BY dimension, image
          ORDER BY win_rate DESC, shown DESC, image
          LIMIT ?
        """, (top,))
        recent = _fetchall_dicts(conn, """
          SELECT submitted_utc, participant_id, folder FROM participants
          ORDER BY submitted_utc DESC LIMIT 10
        """)
    finally:
        conn.close()
    return {
        "totals": {"participants": participants, "votes": votes},
        "dimensions": per_dim,
        "top_items": win_rates,
        "recent": recent,
    }


def export_votes(db_path: Path, export_dir: Path) -> List[Path]:
    ts = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
    export_dir.mkdir(parents=True, exist_ok=True)
    written: List[Path] = []
    conn = connect(db_path)
    try:
        for table in ("participants", "votes"):
            rows = conn.execute(f"SELECT * FROM {table}").fetchall()
            if not rows:
                continue
            path = export_dir / f"{table}_{ts}.csv"
            with open(path, "w", encoding="utf-8", newline="") as f:
                w = csv.writer(f); w.writerow(rows[0].keys())
                for r in rows: w.writerow([r[k] for k in r.keys()])
            written.append(path)
    finally:
        conn.close()
    return written
