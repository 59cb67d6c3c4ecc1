"""Lookup management page and lookup-table API routes."""

from __future__ import annotations

from typing import Any, Mapping

from flask import (
    Blueprint,
    flash,
    jsonify,
    redirect,
    render_template,
    request,
    url_for,
)

from lookups import service as lookups_service
from routes.api_utils import (
    BadRequestError,
    ConflictError,
    NotFoundError,
    handle_api_errors,
)

lookups_blueprint = Blueprint("lookups", __name__)

_context: dict[str, Any] = {}


def configure(context: Mapping[str, Any]) -> None:
    """Inject the database accessors used by the lookup routes."""
    _context.update(context)


def _ctx(key: str) -> Any:
    if key not in _context:
        raise RuntimeError(f"lookup routes missing context value: {key}")
    return _context[key]


def _resolve_type(raw_type: str) -> str:
    lookup_type = lookups_service.normalize_lookup_type(raw_type)
    if lookup_type is None:
        raise NotFoundError('unknown lookup type')
    return lookup_type


def _lookup_payload() -> Mapping[str, Any]:
    payload = request.get_json(silent=True)
    if payload is None:
        payload = request.form
    if not isinstance(payload, Mapping):
        raise BadRequestError('invalid payload')
    return payload


def _is_safe_next(target: str | None) -> bool:
    return bool(target) and target.startswith('/') and not target.startswith('//')


@lookups_blueprint.route('/dashboard/lookups', methods=['GET', 'POST'])
def lookups_page():
    db = _ctx('get_db')()
    lookup_types = [
        {'type': lookup_type, 'label': lookups_service.format_lookup_label(lookup_type)}
        for lookup_type in lookups_service.LOOKUP_TYPES
    ]
    selected = (
        lookups_service.normalize_lookup_type(request.values.get('type'))
        or lookup_types[0]['type']
    )

    if request.method == 'POST':
        next_url = request.form.get('next')
        with _ctx('db_lock'), db.begin() as conn:
            status, item = lookups_service.create_lookup(
                conn,
                selected,
                request.form.get('name'),
                description=request.form.get('description'),
                sort_order=request.form.get('sort_order'),
            )
        label = lookups_service.format_lookup_label(selected)
        if status == 'created':
            flash(f"{label} \"{item['canonical_name']}\" added.", 'success')
        elif status == 'reactivated':
            flash(f"{label} \"{item['canonical_name']}\" restored.", 'success')
        elif status == 'exists':
            flash(f"{label} \"{item['canonical_name']}\" already exists.", 'info')
        else:
            flash('Enter a name for the new value.', 'error')
        if _is_safe_next(next_url):
            return redirect(next_url)
        return redirect(url_for('lookups.lookups_page', type=selected))

    include_inactive = request.args.get('include_inactive') in {'1', 'true', 'on'}
    with db.connect() as conn:
        items = lookups_service.list_lookups(
            conn, selected, include_inactive=include_inactive
        )
    return render_template(
        'lookups.html',
        lookup_types=lookup_types,
        selected_type=selected,
        selected_label=lookups_service.format_lookup_label(selected),
        items=items,
        include_inactive=include_inactive,
    )


@lookups_blueprint.route('/api/lookups/<lookup_type>', methods=['GET', 'POST'])
@handle_api_errors
def api_lookup_options(lookup_type: str):
    resolved = _resolve_type(lookup_type)
    db = _ctx('get_db')()

    if request.method == 'GET':
        include_inactive = request.args.get('include_inactive') in {'1', 'true', 'on'}
        with db.connect() as conn:
            items = lookups_service.list_lookups(
                conn, resolved, include_inactive=include_inactive
            )
        return jsonify(
            {
                'type': resolved,
                'label': lookups_service.format_lookup_label(resolved),
                'items': items,
                'total': len(items),
            }
        )

    payload = _lookup_payload()
    with _ctx('db_lock'), db.begin() as conn:
        status, item = lookups_service.create_lookup(
            conn,
            resolved,
            payload.get('name'),
            description=payload.get('description'),
            sort_order=payload.get('sort_order'),
        )
    if item is None or status == 'invalid':
        raise BadRequestError('invalid name')
    status_code = 201 if status in {'created', 'reactivated'} else 200
    return jsonify({'item': item, 'type': resolved, 'status': status}), status_code


@lookups_blueprint.route(
    '/api/lookups/<lookup_type>/<lookup_id>', methods=['PUT', 'DELETE']
)
@handle_api_errors
def api_lookup_item(lookup_type: str, lookup_id: str):
    resolved = _resolve_type(lookup_type)
    db = _ctx('get_db')()

    with _ctx('db_lock'), db.begin() as conn:
        current = lookups_service.get_lookup(conn, lookup_id)
        if current is None or current['type'] not in lookups_service.stored_types(resolved):
            raise NotFoundError('lookup not found')

        if request.method == 'DELETE':
            lookups_service.deactivate_lookup(conn, lookup_id)
            return jsonify({'status': 'deleted', 'type': resolved, 'id': lookup_id})

        payload = _lookup_payload()
        status, item = lookups_service.update_lookup(
            conn,
            lookup_id,
            payload.get('name'),
            description=payload.get('description'),
        )

    if status == 'invalid':
        raise BadRequestError('invalid name')
    if status == 'not_found':
        raise NotFoundError('lookup not found')
    if status == 'conflict':
        raise ConflictError('name conflict')
    return jsonify({'item': item, 'type': resolved})
