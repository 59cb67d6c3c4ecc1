"""HTML-facing Flask routes: login, dashboard, games table and game form."""
from __future__ import annotations

from typing import Any, Mapping

from flask import (
    Blueprint,
    abort,
    current_app,
    flash,
    g,
    jsonify,
    redirect,
    render_template,
    request,
    send_file,
    session,
    url_for,
)

from accounts.service import ensure_user_profile, touch_activity
from catalog import service as catalog_service
from catalog.forms import FORM_TABS, ValidationError, parse_game_form, submitted_ratings
from dashboard import stats as dashboard_stats
from db.schema import GAME_STATUSES
from importer.csv_preview import CsvImportError, preview_import
from lookups.service import load_form_lookups
from media.service import list_game_media
from media.storage import StorageError
from routes.api_utils import UnauthorizedError

web_blueprint = Blueprint("web", __name__)

_context: dict[str, Any] = {}

_PUBLIC_ENDPOINTS = ("web.login", "web.storage_object", "static")
_TAB_KEYS = tuple(key for key, _ in FORM_TABS)


def configure(context: Mapping[str, Any]) -> None:
    """Provide shared state required by the HTML routes."""
    _context.update(context)


def _ctx(key: str) -> Any:
    if key not in _context:
        raise RuntimeError(f"web routes missing context value: {key}")
    return _context[key]


def _get_db():
    return _ctx("get_db")()


def _current_user_id() -> str | None:
    return session.get("user_id")


def _current_role() -> str:
    profile = g.get("current_user") or {}
    return profile.get("role") or "user"


@web_blueprint.before_app_request
def require_login():
    if request.endpoint in _PUBLIC_ENDPOINTS:
        return None
    user_id = _current_user_id()
    if session.get("authenticated") and user_id:
        with _ctx("db_lock"), _get_db().begin() as conn:
            g.current_user = ensure_user_profile(conn, user_id)
        return None
    if request.path.startswith("/api/"):
        return jsonify(UnauthorizedError().to_dict()), UnauthorizedError.status_code
    return redirect(url_for("web.login", next=request.full_path.rstrip("?")))


@web_blueprint.route("/login", methods=["GET", "POST"])
def login():
    error = None
    email = ""
    if request.method == "POST":
        email = (request.form.get("email") or "").strip().lower()
        if not email:
            error = "Email is required"
        elif request.form.get("password") != _ctx("app_password"):
            error = "Invalid email or password"
        else:
            session.clear()
            session["authenticated"] = True
            session["user_id"] = email
            with _ctx("db_lock"), _get_db().begin() as conn:
                ensure_user_profile(conn, email)
                touch_activity(conn, email)
            next_url = request.args.get("next") or ""
            if next_url.startswith("/") and not next_url.startswith("//"):
                return redirect(next_url)
            return redirect(url_for("web.dashboard"))
    return render_template("login.html", error=error, email=email)


@web_blueprint.route("/logout")
def logout():
    session.clear()
    return redirect(url_for("web.login"))


@web_blueprint.route("/")
def index():
    return redirect(url_for("web.dashboard"))


@web_blueprint.route("/dashboard")
def dashboard():
    role = _current_role()
    with _get_db().connect() as conn:
        context = {
            "stats_cards": dashboard_stats.stats_cards(conn, role),
            "section_cards": dashboard_stats.section_cards(conn),
            "games_per_day": dashboard_stats.games_per_day(conn),
            "charts": dashboard_stats.chart_data(conn),
            "activity": dashboard_stats.recent_activity(conn, _current_user_id(), role),
            "recent_games": catalog_service.recent_games(conn),
        }
    return render_template("dashboard.html", **context)


def _table_args() -> dict[str, Any]:
    try:
        page = int(request.args.get("page", 1))
    except (TypeError, ValueError):
        page = 1
    return {
        "query": request.args.get("q"),
        "status": request.args.get("status"),
        "sort": request.args.get("sort"),
        "direction": request.args.get("direction"),
        "page": page,
        "page_size": _ctx("page_size"),
    }


@web_blueprint.route("/dashboard/games")
def games_table():
    with _get_db().connect() as conn:
        page = catalog_service.list_games(conn, **_table_args())
    return render_template("games.html", page=page, statuses=GAME_STATUSES)


@web_blueprint.route("/dashboard/games/import", methods=["POST"])
def import_games():
    upload = request.files.get("file")
    if upload is None or not upload.filename:
        flash("No file uploaded", "error")
        return redirect(url_for("web.games_table"))
    try:
        text = upload.read().decode("utf-8-sig")
        with _get_db().connect() as conn:
            preview = preview_import(conn, text)
    except UnicodeDecodeError:
        flash("CSV must be UTF-8 encoded", "error")
    except CsvImportError as exc:
        flash(str(exc), "error")
    else:
        current_app.logger.info("CSV import preview for %s: %s", upload.filename, preview.message)
        flash(preview.message, "success")
    return redirect(url_for("web.games_table"))


def _submitted_state(game_id: str | None = None) -> dict[str, Any]:
    """Return the form state to show again after a rejected save."""

    game: dict[str, Any] = request.form.to_dict()
    existing_media: list[dict[str, Any]] = []
    if game_id:
        with _get_db().connect() as conn:
            stored = catalog_service.get_game(conn, game_id)
            existing_media = list_game_media(conn, game_id, _ctx("storage"))
        if stored is not None:
            game["cover_asset_id"] = stored.get("cover_asset_id")
    return {
        "game": game,
        "additional_genre_ids": request.form.getlist("additional_genre_ids"),
        "theme_ids": request.form.getlist("theme_ids"),
        "mode_ids": request.form.getlist("mode_ids"),
        "ratings": submitted_ratings(request.form),
        "media": existing_media,
    }


def _render_form(game_id: str | None, tab: str, state: dict[str, Any] | None, status: int = 200):
    with _get_db().connect() as conn:
        form_lookups = load_form_lookups(conn)
    return (
        render_template(
            "game_form.html",
            game_id=game_id,
            tab=tab,
            tabs=FORM_TABS,
            state=state or {},
            lookups=form_lookups,
            statuses=GAME_STATUSES,
            cover_min_size=_ctx("cover_min_size"),
        ),
        status,
    )


@web_blueprint.route("/dashboard/games/new", methods=["GET", "POST"])
def game_form():
    game_id = request.args.get("id") or None
    tab = request.args.get("tab") if request.args.get("tab") in _TAB_KEYS else _TAB_KEYS[0]

    if request.method == "GET":
        state = None
        if game_id:
            with _get_db().connect() as conn:
                state = catalog_service.load_game_for_edit(conn, game_id, _ctx("storage"))
            if state is None:
                flash("Game not found.", "error")
                return redirect(url_for("web.games_table"))
        return _render_form(game_id, tab, state)

    try:
        form = parse_game_form(request.form, request.files)
        with _ctx("db_lock"):
            result = catalog_service.save_game(
                _get_db(),
                form,
                game_id=game_id,
                storage=_ctx("storage"),
                user_id=_current_user_id(),
                min_cover_size=_ctx("cover_min_size"),
            )
    except ValidationError as exc:
        flash(str(exc), "error")
        return _render_form(game_id, tab, _submitted_state(game_id), 400)
    except catalog_service.GameSaveError as exc:
        flash(str(exc), "error")
        saved_id = exc.game_id or game_id
        if saved_id:
            return redirect(url_for("web.game_form", id=saved_id, tab=tab))
        return _render_form(game_id, tab, _submitted_state(game_id), 500)

    flash("Game created." if result.created else "Game updated.", "success")
    return redirect(url_for("web.games_table"))


@web_blueprint.route("/dashboard/games/<game_id>/edit")
def edit_game(game_id: str):
    return redirect(url_for("web.game_form", id=game_id, tab=request.args.get("tab")))


@web_blueprint.route("/dashboard/games/<game_id>/delete", methods=["POST"])
def delete_game(game_id: str):
    with _ctx("db_lock"), _get_db().begin() as conn:
        deleted = catalog_service.delete_game(conn, game_id, user_id=_current_user_id())
    if deleted:
        flash("Game deleted.", "success")
    else:
        flash("Game not found.", "error")
    return redirect(url_for("web.games_table"))


@web_blueprint.route("/storage/<bucket>/<path:object_path>")
def storage_object(bucket: str, object_path: str):
    try:
        target = _ctx("storage").resolve(bucket, object_path)
    except StorageError:
        abort(404)
    if not target.is_file():
        abort(404)
    return send_file(target)
