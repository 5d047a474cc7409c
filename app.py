# -*- coding: utf-8 -*-
r"""
Self-contained Flask app for a pairwise image perception survey.

Features
- Participants see two images at a time and pick the one that looks "safer",
  "more walkable", ... for each configured dimension.
- Pairs are planned per dimension so that every image in the pool gets shown
  about equally often over the lifetime of the study (see pair_planner.py).
- Exposure counts live in a JSON ledger (data/image_counts.json) and are only
  bumped once a participant actually submits.
- Each submission is saved as results/participant_*/background.csv + votes.csv
  and indexed in SQLite for the admin dashboard.
- JSON API (/plan-pairs, /submit, /health, /list-images) for an external
  front-end, plus a server-rendered questionnaire at /.
- Admin dashboard (token protected) with exposure spread and win rates.

Requirements: Flask, python-dotenv, PyYAML
"""

from __future__ import annotations
import json, logging, os, random, sqlite3, string
from pathlib import Path
from typing import Any, Dict, List

from flask import (
    Flask, render_template, request, redirect, url_for, send_from_directory,
    session, flash, jsonify
)
from dotenv import load_dotenv
import yaml
from functools import wraps
import threading

from exposure_ledger import ExposureLedger
from pair_scheduler import Comparison, PairScheduler
from survey_errors import InvalidInput, PersistenceError
import survey_storage

logger = logging.getLogger(__name__)

# ---------------------------- Bootstrapping assets ----------------------------

APP_ROOT = Path(__file__).resolve().parent

TEMPLATES: Dict[str, str] = {
"base.html": r"""<!doctype html>
<html lang="en">
<head>
  <meta charset="utf-8"/>
  <title>{{ title or "Street View Perception Survey" }}</title>
  <meta name="viewport" content="width=device-width, initial-scale=1"/>
  <link rel="stylesheet" href="{{ url_for('static', filename='style.css') }}">
  <script defer src="{{ url_for('static', filename='client.js') }}"></script>
</head>
<body>
  <header>
    <div class="container">
      <h1>{{ heading or "Street View Perception Survey" }}</h1>
    </div>
  </header>
  <main class="container">
    {% with messages = get_flashed_messages() %}
      {% if messages %}
        <div class="flash">
          {% for m in messages %}<div>{{ m }}</div>{% endfor %}
        </div>
      {% endif %}
    {% endwith %}
    {% block content %}{% endblock %}
  </main>
  <footer>
    <div class="container small">
      <span>Your responses are anonymous.</span>
    </div>
  </footer>
</body>
</html>
""",

"home.html": r"""{% extends "base.html" %}
{% block content %}
<section class="card">
  <h2>Welcome</h2>
  <p>You will answer a few background questions, then see <strong>pairs of street scenes</strong>.
     For each pair, pick the scene that fits the question better.</p>
  <ul>
    {% for dim, question in dimensions.items() %}
    <li>{{ question }}</li>
    {% endfor %}
  </ul>
  <p class="small">{{ pairs_per_dimension }} pairs per question, {{ total_images }} images in the pool.</p>
  <div class="buttons">
    <a class="btn" href="{{ url_for('start_survey') }}">Start</a>
    <a class="btn" href="{{ url_for('admin_login') }}">Admin</a>
  </div>
</section>
{% endblock %}
""",

"background.html": r"""{% extends "base.html" %}
{% block content %}
<form class="card" method="post" action="{{ url_for('submit_background') }}">
  <h2>About you</h2>
  {% for field, q in questions.items() %}
  <div class="field">
    <label>{{ q.label }}</label>
    <div class="chips">
      {% for opt in q.options %}
      <label class="option-chip">
        <input type="radio" name="{{ field }}" value="{{ opt }}" required
               {% if meta.get(field) == opt %}checked{% endif %}> {{ opt }}
      </label>
      {% endfor %}
    </div>
  </div>
  {% endfor %}
  <div class="buttons">
    <button class="btn" type="submit">Continue</button>
  </div>
</form>
{% endblock %}
""",

"pair.html": r"""{% extends "base.html" %}
{% block content %}
<form class="card" method="post" action="{{ url_for('submit_pair') }}">
  <div class="headrow">
    <div>Question {{ idx }} of {{ total }}</div>
    <div class="progress"><div class="bar" style="width: {{ percent }}%"></div></div>
  </div>
  <h2 class="question">{{ question }}</h2>
  <div class="grid-2">
    <label class="tile img-choice">
      <input type="radio" name="choice" value="left" required onchange="this.form.submit()">
      <img src="{{ url_for('serve_image', name=left) }}" alt="{{ dimension }}-L-{{ idx }}">
    </label>
    <label class="tile img-choice">
      <input type="radio" name="choice" value="right" required onchange="this.form.submit()">
      <img src="{{ url_for('serve_image', name=right) }}" alt="{{ dimension }}-R-{{ idx }}">
    </label>
  </div>
  <input type="hidden" name="position" value="{{ idx - 1 }}">
  <noscript><div class="buttons"><button class="btn" type="submit">Next</button></div></noscript>
</form>
{% endblock %}
""",

"no_data.html": r"""{% extends "base.html" %}
{% block content %}
<section class="card">
  <h2>{{ title }}</h2>
  <p>{{ message }}</p>
  <div class="buttons">
    <a class="btn" href="{{ url_for('home') }}">Home</a>
  </div>
</section>
{% endblock %}
""",

"thanks.html": r"""{% extends "base.html" %}
{% block content %}
<section class="card">
  <h2>Thanks!</h2>
  <p>Your responses were recorded. You can close this window.</p>
  <div class="buttons">
    <a class="btn" href="{{ url_for('home') }}">Home</a>
  </div>
</section>
{% endblock %}
""",

"admin_login.html": r"""{% extends "base.html" %}
{% block content %}
<form class="card" method="post" action="{{ url_for('admin_login', next=request.args.get('next')) }}">
  <h2>Admin Login</h2>
  <p>Enter the admin token.</p>
  <div class="field">
    <label>Token</label>
    <input name="token" type="password" required autocomplete="current-password" />
  </div>
  <div class="buttons">
    <button class="btn" type="submit">Login</button>
    <a class="btn" href="{{ url_for('home') }}">Cancel</a>
  </div>
</form>
{% endblock %}
""",

"admin.html": r"""{% extends "base.html" %}
{% block content %}

<!-- Load Chart.js via CDN -->
<script src="https://cdn.jsdelivr.net/npm/chart.js@4"></script>

<section class="card">
  <div class="headrow">
    <h2>Overview</h2>
    <div>
      <button class="btn" onclick="reloadPool()">Rescan Images</button>
      <a class="btn" href="{{ url_for('admin_export') }}">Export CSVs</a>
      <a class="btn" href="{{ url_for('admin_logout') }}">Logout</a>
    </div>
  </div>

  <div id="overview" class="grid-3 smallcards">
    <div class="mini card-lite"><div class="k">—</div><div class="t">Participants</div></div>
    <div class="mini card-lite"><div class="k">—</div><div class="t">Votes</div></div>
    <div class="mini card-lite"><div class="k">—</div><div class="t">Images</div></div>
  </div>
</section>

<section class="card">
  <h3>Exposure per dimension</h3>
  <div class="charts">
    <canvas id="chartExposure"></canvas>
  </div>
  <table id="tableExposure" class="table">
    <thead><tr><th>Dimension</th><th>Images</th><th>Min</th><th>Max</th><th>Total shown</th></tr></thead>
    <tbody></tbody>
  </table>
</section>

<section class="card">
  <div class="grid-2">
    <div>
      <h3>Votes per dimension</h3>
      <table id="tableVotes" class="table">
        <thead><tr><th>Dimension</th><th>N</th><th>Unanswered</th></tr></thead>
        <tbody></tbody>
      </table>
    </div>
    <div>
      <h3>Top images by win rate</h3>
      <table id="tableTop" class="table">
        <thead><tr><th>Dimension</th><th>Image</th><th>Shown</th><th>Wins</th><th>Rate</th></tr></thead>
        <tbody></tbody>
      </table>
    </div>
  </div>
</section>

<section class="card">
  <h3>Recent submissions</h3>
  <ul id="recent" class="list"></ul>
</section>

<script>
let timer = null, chart = null;

function fillTable(sel, rows, cols) {
  const tb = document.querySelector(sel + " tbody");
  tb.innerHTML = "";
  (rows || []).forEach(row => {
    const tr = document.createElement("tr");
    tr.innerHTML = cols.map(c => `<td>${row[c] ?? ""}</td>`).join("");
    tb.appendChild(tr);
  });
}

async function refreshAll() {
  const r = await fetch("{{ url_for('admin_stats') }}");
  const js = await r.json();
  if (!js.ok) return;
  const d = js.data;

  const ks = document.querySelectorAll("#overview .k");
  ks[0].textContent = d.totals.participants;
  ks[1].textContent = d.totals.votes;
  ks[2].textContent = d.pool;

  fillTable("#tableExposure", d.exposure, ["dimension", "items", "min", "max", "total"]);
  fillTable("#tableVotes", d.dimensions, ["dimension", "n", "skipped"]);
  fillTable("#tableTop", d.top_items, ["dimension", "image", "shown", "wins", "win_rate"]);

  const ul = document.getElementById("recent");
  ul.innerHTML = "";
  (d.recent || []).forEach(x => {
    const li = document.createElement("li");
    li.textContent = `${x.submitted_utc} — ${x.folder}`;
    ul.appendChild(li);
  });

  const labels = (d.exposure || []).map(x => x.dimension);
  const mins = (d.exposure || []).map(x => x.min);
  const maxs = (d.exposure || []).map(x => x.max);
  if (!chart) {
    chart = new Chart(document.getElementById("chartExposure"), {
      type: "bar",
      data: { labels, datasets: [{ label: "Min shown", data: mins }, { label: "Max shown", data: maxs }] },
      options: { responsive: true, animation: false }
    });
  } else {
    chart.data.labels = labels;
    chart.data.datasets[0].data = mins;
    chart.data.datasets[1].data = maxs;
    chart.update();
  }
}

function startPolling() {
  if (timer) clearInterval(timer);
  refreshAll();
  timer = setInterval(refreshAll, 5000);
}

async function reloadPool() {
  const r = await fetch("{{ url_for('admin_reload') }}", { method: "POST" });
  const js = await r.json();
  if (js.ok) {
    refreshAll();
    alert(js.message);
  } else {
    alert("Rescan failed: " + (js.error || "Unknown error"));
  }
}

startPolling();
</script>

{% endblock %}
"""
}

STATIC_FILES: Dict[str, str] = {
"style.css": r""":root {
  --bg: #0f1115; --fg: #e7e9ee; --muted: #aab2c0; --accent: #5aa0ff; --card: #151923;
  --border: #242a36; --btn: #1e2633; --btn-hover: #263142;
}
* { box-sizing: border-box; }
body { margin: 0; font-family: system-ui, Segoe UI, Roboto, Helvetica, Arial, sans-serif;
       background: var(--bg); color: var(--fg); }
header, footer { background: #0c0f14; border-bottom: 1px solid var(--border); }
footer { border-top: 1px solid var(--border); border-bottom: none; margin-top: 24px; }
.container { max-width: 1100px; margin: 0 auto; padding: 16px; }
.small { color: var(--muted); font-size: 14px; }
h1, h2, h3 { margin: 0 0 12px; }
.card { background: var(--card); border: 1px solid var(--border); border-radius: 10px; padding: 16px; margin: 16px 0; }
.grid-3 { display: grid; grid-template-columns: repeat(3, 1fr); gap: 12px; }
.grid-2 { display: grid; grid-template-columns: repeat(2, 1fr); gap: 12px; }
.btn { background: var(--btn); color: var(--fg); border: 1px solid var(--border); padding: 10px 16px;
       border-radius: 8px; text-decoration: none; cursor: pointer; }
.btn:hover { background: var(--btn-hover); }
.tile { background: #121722; border: 1px solid var(--border); border-radius: 8px; padding: 8px; }
.tile img { width: 100%; background: #0c0f14; border: 1px solid var(--border); border-radius: 8px; }
.img-choice { cursor: pointer; }
.img-choice input { display: none; }
.img-choice:hover, .img-choice:has(input:checked) { border-color: var(--accent); }
.field { margin: 12px 0; }
.field > label { display: block; margin-bottom: 6px; color: var(--muted); }
.chips { display: flex; gap: 8px; flex-wrap: wrap; }
.option-chip { border: 1px solid var(--border); border-radius: 16px; padding: 6px 12px; cursor: pointer; }
.buttons { margin-top: 12px; display: flex; gap: 8px; flex-wrap: wrap; }
.question { text-align: center; }
.headrow { display: flex; justify-content: space-between; align-items: center; margin-bottom: 8px; color: var(--muted); }
.progress { width: 40%; height: 8px; background: var(--btn); border-radius: 4px; overflow: hidden; }
.progress .bar { height: 100%; background: var(--accent); }
.flash { background: #3a1e1e; border: 1px solid #5a2a2a; padding: 8px; border-radius: 8px; margin-bottom: 8px; }

.table { width: 100%; border-collapse: collapse; margin-top: 8px; }
.table th, .table td { border: 1px solid var(--border); padding: 6px 8px; text-align: left; }
.table th { background: #0f1420; color: var(--muted); }
.smallcards { gap: 8px; }
.card-lite { background: #121722; border: 1px dashed var(--border); border-radius: 8px; padding: 10px; }
.card-lite .k { font-size: 20px; font-weight: 600; }
.card-lite .t { color: var(--muted); }
.list { list-style: none; padding-left: 0; margin: 0; }
.list li { padding: 4px 0; border-bottom: 1px dashed var(--border); }

.charts { margin: 12px 0; }
""",

"client.js": r"""// arrow keys pick the left / right image on a pair page
document.addEventListener("keydown", (e) => {
  const side = { ArrowLeft: "left", ArrowRight: "right" }[e.key];
  if (!side) return;
  const input = document.querySelector(`.img-choice input[value="${side}"]`);
  if (input) { input.checked = true; input.form.submit(); }
});
"""
}

DEFAULT_CONFIG_YAML = r"""# Auto-created if missing; edit to match your study
images:
  dir: "images"
  extensions: [".jpg", ".jpeg", ".png", ".webp"]

# dimension key -> question shown above each pair
dimensions:
  safer: "Which place looks safer?"
  beautiful: "Which place looks more beautiful?"
  boring: "Which place looks more boring?"
  lively: "Which place looks more lively?"
  relaxing: "Which place looks more relaxing?"
  walkable: "Which place looks more walkable?"
  bikeable: "Which place looks better for cycling?"

pairs_per_dimension: 5
# upper bound for pairsPerDimension on /plan-pairs
max_pairs_per_dimension: 50

background:
  gender:
    label: "Gender"
    options: ["Male", "Female", "Prefer not to say"]
  age:
    label: "Age"
    options: ["20 or under", "21-29", "30-39", "40-49", "50 or over"]
  identity:
    label: "You are a"
    options: ["Undergraduate", "Master's student", "PhD student", "Staff"]
  yearsInSchool:
    label: "Time spent at this campus"
    options: ["Less than 1 year", "1-2 years", "2-3 years", "3-4 years", "More than 4 years"]
  personality:
    label: "You prefer"
    options: ["Quiet places (introvert)", "Busy places (extrovert)"]
  commute:
    label: "Main way of getting around campus"
    options: ["Walking", "Bicycle", "E-bike", "Shuttle bus", "Shared bike", "Other"]

storage:
  root: "survey_data"
"""

def ensure_assets():
    """Write templates/static if missing; create default config.yaml if missing."""
    tpl_dir = APP_ROOT / "templates"
    st_dir = APP_ROOT / "static"
    tpl_dir.mkdir(parents=True, exist_ok=True)
    st_dir.mkdir(parents=True, exist_ok=True)
    for name, content in TEMPLATES.items():
        path = tpl_dir / name
        if not path.exists():
            path.write_text(content, encoding="utf-8")
    for name, content in STATIC_FILES.items():
        path = st_dir / name
        if not path.exists():
            path.write_text(content, encoding="utf-8")
    cfg_path = CONFIG_PATH
    if not cfg_path.exists():
        cfg_path.write_text(DEFAULT_CONFIG_YAML, encoding="utf-8")


# ---------------------------- Config & storage ----------------------------

load_dotenv(APP_ROOT / ".env")
CONFIG_PATH = Path(os.getenv("SURVEY_CONFIG", APP_ROOT / "config.yaml"))
ensure_assets()

def read_yaml(path: Path) -> dict:
    with open(path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}

def _resolve(p: str | Path) -> Path:
    p = Path(p)
    return p if p.is_absolute() else APP_ROOT / p

CFG = read_yaml(CONFIG_PATH)

DIMENSIONS: Dict[str, str] = {str(k): str(v) for k, v in (CFG.get("dimensions") or {"safer": "Which place looks safer?"}).items()}
PAIRS_PER_DIMENSION = int(CFG.get("pairs_per_dimension", 5))
MAX_PAIRS_PER_DIMENSION = int(CFG.get("max_pairs_per_dimension", 50))
BACKGROUND: Dict[str, dict] = CFG.get("background") or {}
IMAGE_EXTENSIONS = tuple(CFG.get("images", {}).get("extensions", survey_storage.DEFAULT_EXTENSIONS))

IMAGES_DIR = _resolve(os.getenv("SURVEY_IMAGES_DIR", CFG.get("images", {}).get("dir", "images")))
STORAGE_ROOT = _resolve(os.getenv("SURVEY_STORAGE", CFG.get("storage", {}).get("root", "survey_data")))
STORAGE_ROOT.mkdir(parents=True, exist_ok=True)

COUNTS_PATH = STORAGE_ROOT / "data" / "image_counts.json"
RESULTS_DIR = STORAGE_ROOT / "results"
DB_PATH = STORAGE_ROOT / "db" / "survey.sqlite"
EXPORT_DIR = STORAGE_ROOT / "exports"
RESULTS_DIR.mkdir(parents=True, exist_ok=True)
EXPORT_DIR.mkdir(parents=True, exist_ok=True)

# One ledger per process; every plan and submission goes through SCHEDULER.
LEDGER = ExposureLedger(COUNTS_PATH)
SCHEDULER = PairScheduler(LEDGER, max_pairs_per_dimension=MAX_PAIRS_PER_DIMENSION)

# ---------------------------- Flask app ----------------------------

app = Flask(__name__)
app.secret_key = os.getenv("FLASK_SECRET", "".join(random.choices(string.ascii_letters + string.digits, k=32)))
app.json.sort_keys = False  # keep dimensions in request order

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, PUT, PATCH, DELETE, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, Authorization, X-Requested-With",
    "Access-Control-Expose-Headers": "Content-Disposition",
}

@app.after_request
def _add_cors(resp):
    for k, v in CORS_HEADERS.items():
        resp.headers.setdefault(k, v)
    return resp

# ---------------------------- Pool & submissions ----------------------------

def current_pool() -> List[str]:
    return survey_storage.list_images(IMAGES_DIR, IMAGE_EXTENSIONS)

def save_answers(meta: Dict[str, Any], comparisons: List[Comparison]) -> Path:
    """Write the participant's CSV folder and index the votes."""
    folder = survey_storage.write_submission(RESULTS_DIR, meta, comparisons)
    survey_storage.index_submission(DB_PATH, folder.name, folder.name,
                                    json.dumps(meta, ensure_ascii=False), comparisons)
    return folder

def record_shown(comparisons: List[Comparison]):
    """Bump exposure counts for what was actually shown."""
    pool = current_pool()
    # an empty or missing images dir must not prune the whole table
    SCHEDULER.record_exposure(comparisons, item_pool=pool if len(pool) >= 2 else None)

def store_submission(meta: Dict[str, Any], comparisons: List[Comparison]) -> Path:
    folder = save_answers(meta, comparisons)
    record_shown(comparisons)
    return folder

def unknown_dimensions(dimensions) -> List[str]:
    return [d for d in dimensions if d not in DIMENSIONS]

def _error(message: str, status: int):
    return jsonify({"ok": False, "error": message}), status

# ---------------------------- Init ----------------------------

_init_lock = threading.Lock()
_initialized = False

def _init_once():
    global _initialized
    with _init_lock:
        if _initialized:
            return
        survey_storage.init_db(DB_PATH)
        pool = current_pool()
        if len(pool) >= 2:
            LEDGER.ensure(DIMENSIONS.keys(), pool)
        logger.info("Survey ready: %d image(s) in %s", len(pool), IMAGES_DIR)
        _initialized = True

@app.before_request
def _ensure_init():
    _init_once()

# ---------------------------- JSON API ----------------------------

@app.get("/health")
def health():
    exists = IMAGES_DIR.exists()
    files = current_pool() if exists else []
    return jsonify({
        "ok": True,
        "server": "ok",
        "imagesDir": str(IMAGES_DIR),
        "exists": exists,
        "totalImages": len(files),
        "sample": files[:10],
    })

@app.get("/list-images")
def list_images():
    if not IMAGES_DIR.exists():
        return _error(f"Images directory does not exist: {IMAGES_DIR}", 400)
    try:
        files = current_pool()
    except OSError:
        logger.exception("Listing %s failed", IMAGES_DIR)
        return _error("list-images failed", 500)
    return jsonify({"ok": True, "total": len(files), "files": files})

@app.get("/images/<path:name>")
def serve_image(name: str):
    return send_from_directory(IMAGES_DIR, name, max_age=30 * 24 * 3600)

@app.post("/plan-pairs")
@app.post("/api/plan-pairs")
def plan_pairs():
    body = request.get_json(silent=True) or {}
    dimensions = body.get("dimensions") or []
    k = body.get("pairsPerDimension", PAIRS_PER_DIMENSION)
    if not isinstance(dimensions, list) or not dimensions:
        return _error("Missing dimensions", 400)
    unknown = unknown_dimensions(d for d in dimensions if isinstance(d, str))
    if unknown:
        return _error(f"Unknown dimension(s): {', '.join(unknown)}", 400)
    if not IMAGES_DIR.exists():
        return _error(f"Images directory does not exist: {IMAGES_DIR}", 400)
    files = current_pool()
    if len(files) < 2:
        return _error(f"Not enough images (found {len(files)}). Put jpg/jpeg/png/webp files in {IMAGES_DIR}", 400)
    try:
        plan = SCHEDULER.plan_pairs(dimensions, files, k)
    except InvalidInput as e:
        return _error(str(e), 400)
    except PersistenceError:
        logger.exception("Planning pairs failed")
        return _error("Planning failed, see server log", 500)
    return jsonify({
        "ok": True,
        "plan": {dim: [p._asdict() for p in pairs] for dim, pairs in plan.items()},
        "totalImages": len(files),
    })

@app.post("/submit")
def submit():
    body = request.get_json(silent=True) or {}
    meta = body.get("meta") or {}
    if not isinstance(meta, dict):
        return _error("meta must be an object", 400)
    try:
        comparisons = [Comparison.from_payload(r) for r in (body.get("comparisons") or [])]
        unknown = unknown_dimensions(dict.fromkeys(c.dimension for c in comparisons))
        if unknown:
            raise InvalidInput(f"Unknown dimension(s): {', '.join(unknown)}")
        folder = store_submission(meta, comparisons)
    except InvalidInput as e:
        return _error(str(e), 400)
    except (PersistenceError, OSError, sqlite3.Error):
        logger.exception("Saving submission failed")
        return _error("Saving failed, see server log", 500)
    return jsonify({"ok": True, "folder": folder.name})

# ---------------------------- Questionnaire ----------------------------

def _plan_rows() -> List[list]:
    return session.get("pairs") or []

@app.get("/")
def home():
    return render_template("home.html", dimensions=DIMENSIONS,
                           pairs_per_dimension=PAIRS_PER_DIMENSION, total_images=len(current_pool()))

@app.get("/start")
def start_survey():
    files = current_pool()
    if len(files) < 2:
        return render_template("no_data.html", title="Survey unavailable",
                               message=f"Not enough images in the pool (found {len(files)}).")
    try:
        plan = SCHEDULER.plan_pairs(list(DIMENSIONS), files, PAIRS_PER_DIMENSION)
    except PersistenceError:
        logger.exception("Planning pairs failed")
        return render_template("no_data.html", title="Survey unavailable",
                               message="Could not prepare your questions. Please try again later."), 500
    # flat list so the order survives the session round trip
    session["pairs"] = [[dim, p.left, p.right] for dim, pairs in plan.items() for p in pairs]
    session.pop("saved_folder", None)
    session["choices"] = [""] * len(session["pairs"])
    session["pair_idx"] = 0
    session["meta"] = {}
    return redirect(url_for("background") if BACKGROUND else url_for("show_pair"))

@app.get("/background")
def background():
    if not _plan_rows():
        return redirect(url_for("home"))
    return render_template("background.html", questions=BACKGROUND, meta=session.get("meta", {}))

@app.post("/background")
def submit_background():
    if not _plan_rows():
        return redirect(url_for("home"))
    form = request.form
    meta = {field: form.get(field, "").strip() for field in BACKGROUND}
    missing = [BACKGROUND[f].get("label", f) for f, v in meta.items() if not v]
    session["meta"] = meta
    if missing:
        flash("Please answer: " + ", ".join(missing)); return redirect(url_for("background"))
    return redirect(url_for("show_pair"))

@app.get("/pair")
def show_pair():
    rows = _plan_rows()
    if not rows:
        return redirect(url_for("home"))
    idx = session.get("pair_idx", 0)
    if idx >= len(rows):
        return redirect(url_for("thanks"))
    dim, left, right = rows[idx]
    return render_template(
        "pair.html",
        dimension=dim, question=DIMENSIONS.get(dim, "Which scene fits better?"),
        left=left, right=right,
        idx=idx + 1, total=len(rows), percent=round(100 * idx / len(rows)),
    )

@app.post("/submit/pair")
def submit_pair():
    rows = _plan_rows()
    if not rows:
        return redirect(url_for("home"))
    idx = session.get("pair_idx", 0)
    choice = request.form.get("choice", "")
    if choice not in ("left", "right"):
        flash("Please pick one of the two images."); return redirect(url_for("show_pair"))
    # a stale tab re-posting an earlier question is ignored
    if str(idx) != request.form.get("position", str(idx)) or idx >= len(rows):
        return redirect(url_for("show_pair"))
    choices = session.get("choices") or [""] * len(rows)
    choices[idx] = choice
    session["choices"] = choices
    session["pair_idx"] = idx + 1
    if idx + 1 < len(rows):
        return redirect(url_for("show_pair"))

    per_dim: Dict[str, int] = {}
    comparisons = []
    for (dim, left, right), ch in zip(rows, choices):
        per_dim[dim] = per_dim.get(dim, 0) + 1
        comparisons.append(Comparison(dim, left, right, ch, per_dim[dim]))
    # a retry after a failed exposure commit must not save the answers twice
    try:
        if not session.get("saved_folder"):
            session["saved_folder"] = save_answers(session.get("meta", {}), comparisons).name
        record_shown(comparisons)
    except (PersistenceError, OSError, sqlite3.Error):
        logger.exception("Saving submission failed")
        session["pair_idx"] = idx
        return render_template("no_data.html", title="Could not save",
                               message="Your answers could not be saved. Please submit the last question again."), 500
    for key in ("pairs", "choices", "pair_idx", "meta", "saved_folder"):
        session.pop(key, None)
    return redirect(url_for("thanks"))

@app.get("/thanks")
def thanks():
    return render_template("thanks.html")

# ---------------------------- Admin ----------------------------

def is_admin() -> bool:
    return bool(session.get("is_admin") is True)

def require_admin(view_func):
    @wraps(view_func)
    def wrapper(*args, **kwargs):
        if not is_admin():
            return redirect(url_for("admin_login", next=request.path))
        return view_func(*args, **kwargs)
    return wrapper

@app.get("/admin/login")
def admin_login():
    return render_template("admin_login.html", title="Admin Login", heading="Admin Login")

@app.post("/admin/login")
def admin_login_post():
    token = request.form.get("token","").strip()
    correct = os.getenv("ADMIN_TOKEN","")
    if token and correct and token == correct:
        session["is_admin"] = True
        next_url = request.args.get("next") or url_for("admin_home")
        if not next_url.startswith("/") or next_url.startswith(("//", "/\\")):
            next_url = url_for("admin_home")
        return redirect(next_url)
    flash("Invalid admin token."); return redirect(url_for("admin_login"))

@app.get("/admin/logout")
def admin_logout():
    session.pop("is_admin", None); return redirect(url_for("home"))

@app.get("/admin")
@require_admin
def admin_home():
    return render_template("admin.html", title="Admin Dashboard", heading="Admin Dashboard")

@app.get("/admin/stats")
@require_admin
def admin_stats():
    try:
        stats = survey_storage.vote_stats(DB_PATH)
    except sqlite3.Error as e:
        logger.exception("Reading stats failed")
        return jsonify({"ok": False, "error": str(e)}), 500
    stats["pool"] = len(current_pool())
    stats["exposure"] = LEDGER.summary()
    return jsonify({"ok": True, "data": stats})

@app.post("/admin/reload")
@require_admin
def admin_reload():
    files = current_pool()
    if len(files) < 2:
        return jsonify({"ok": False, "error": f"Only {len(files)} image(s) in {IMAGES_DIR}"}), 400
    try:
        LEDGER.ensure(DIMENSIONS.keys(), files)
    except PersistenceError as e:
        logger.exception("Rescan failed")
        return jsonify({"ok": False, "error": str(e)}), 500
    return jsonify({"ok": True, "message": f"Exposure table synced with {len(files)} image(s).",
                    "exposure": LEDGER.summary()})

@app.get("/admin/export")
@require_admin
def admin_export():
    files = survey_storage.export_votes(DB_PATH, EXPORT_DIR)
    return jsonify({"exported": bool(files), "files": [str(p) for p in files]})


# ---------------------------- Main ----------------------------
if __name__ == "__main__":
    logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"),
                        format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    with app.app_context():
        _init_once()
    app.run(host="0.0.0.0", port=int(os.getenv("PORT", "4000")), debug=False)
