"""Games table and CSV import API routes."""

from __future__ import annotations

from typing import Any, Mapping

from flask import Blueprint, Response, current_app, jsonify, request

from catalog import service as catalog_service
from importer.csv_preview import (
    TEMPLATE_FILENAME,
    preview_import,
    template_csv,
)
from routes.api_utils import BadRequestError, handle_api_errors

games_blueprint = Blueprint("games", __name__)

_context: dict[str, Any] = {}


def configure(context: Mapping[str, Any]) -> None:
    """Provide shared state required by the games API."""
    _context.update(context)


def _ctx(key: str) -> Any:
    if key not in _context:
        raise RuntimeError(f"games routes missing context value: {key}")
    return _context[key]


def _coerce_page(value: Any) -> int:
    try:
        return max(1, int(value))
    except (TypeError, ValueError):
        return 1


@games_blueprint.route('/api/games')
@handle_api_errors
def api_games():
    page_size = _ctx('page_size')
    requested_size = request.args.get('page_size')
    if requested_size:
        try:
            page_size = min(max(1, int(requested_size)), 100)
        except (TypeError, ValueError) as exc:
            raise BadRequestError('invalid page size') from exc

    with _ctx('get_db')().connect() as conn:
        page = catalog_service.list_games(
            conn,
            query=request.args.get('q'),
            status=request.args.get('status'),
            sort=request.args.get('sort'),
            direction=request.args.get('direction'),
            page=_coerce_page(request.args.get('page')),
            page_size=page_size,
        )
    return jsonify(page.to_dict())


@games_blueprint.route('/api/games/template.csv')
@handle_api_errors
def api_games_template():
    return Response(
        template_csv(),
        mimetype='text/csv',
        headers={'Content-Disposition': f'attachment; filename={TEMPLATE_FILENAME}'},
    )


@games_blueprint.route('/api/games/import', methods=['POST'])
@handle_api_errors
def api_games_import():
    upload = request.files.get('file')
    if upload is None or not upload.filename:
        raise BadRequestError('No file uploaded')
    try:
        text = upload.read().decode('utf-8-sig')
    except UnicodeDecodeError as exc:
        raise BadRequestError('CSV must be UTF-8 encoded') from exc

    with _ctx('get_db')().connect() as conn:
        preview = preview_import(conn, text)

    current_app.logger.info(
        "CSV import preview for %s: %s", upload.filename, preview.message
    )
    return jsonify(preview.to_dict())
