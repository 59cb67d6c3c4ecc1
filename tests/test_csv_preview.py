import io

import pytest

from importer.csv_preview import (
    TEMPLATE_HEADERS,
    CsvImportError,
    parse_csv,
    preview_import,
    template_csv,
)


def _quote(value):
    return '"' + value.replace('"', '""') + '"'


def _csv_row(**values):
    return ','.join(_quote(values.get(header, '')) for header in TEMPLATE_HEADERS)


def _template_with(*rows):
    return template_csv() + '\n'.join(rows) + '\n'


def test_template_is_header_row_with_trailing_newline():
    text = template_csv()
    assert text == ','.join(TEMPLATE_HEADERS) + '\n'


def test_template_header_is_accepted_by_parser():
    text = _template_with(_csv_row(canonical_title='Celeste'))
    rows = parse_csv(text)
    assert len(rows) == 1
    assert list(rows[0]) == list(TEMPLATE_HEADERS)
    assert rows[0]['canonical_title'] == 'Celeste'


def test_parse_csv_handles_quotes_commas_and_newlines():
    text = 'canonical_title,synopsis_short\n"Hello, ""World""","line one\nline two"\n'
    rows = parse_csv(text)
    assert rows == [
        {'canonical_title': 'Hello, "World"', 'synopsis_short': 'line one\nline two'}
    ]


def test_parse_csv_trims_and_fills_missing_trailing_values():
    text = ' canonical_title , status ,notes_internal\n  Celeste  ,released\n\n   \nHades\n'
    rows = parse_csv(text)
    assert rows == [
        {'canonical_title': 'Celeste', 'status': 'released', 'notes_internal': ''},
        {'canonical_title': 'Hades', 'status': '', 'notes_internal': ''},
    ]


def test_parse_csv_empty_input():
    assert parse_csv('') == []
    assert parse_csv('   \n') == []


def test_parse_csv_repeated_header_keeps_last_value():
    rows = parse_csv('canonical_title,status,status\nCeleste,announced,released\n')
    assert rows == [{'canonical_title': 'Celeste', 'status': 'released'}]


def test_parse_csv_keeps_quote_inside_unquoted_field():
    rows = parse_csv('canonical_title,status\nx"y,released\n')
    assert rows == [{'canonical_title': 'x"y', 'status': 'released'}]


def test_preview_reads_only_true_as_true(db):
    text = _template_with(
        _csv_row(
            canonical_title='Celeste',
            coop_supported='yes',
            is_vr_only='1',
            is_cloud_only='on',
            crossplay_supported='TRUE',
            crosssave_supported=' True ',
        )
    )
    with db.connect() as conn:
        preview = preview_import(conn, text)

    game = preview.payloads[0]['game']
    assert game['coop_supported'] is False
    assert game['is_vr_only'] is False
    assert game['is_cloud_only'] is False
    assert game['crossplay_supported'] is True
    assert game['crosssave_supported'] is True
    assert game['is_vr_supported'] is False


def test_preview_rejects_empty_csv(db):
    with db.connect() as conn:
        with pytest.raises(CsvImportError, match='No rows found in CSV'):
            preview_import(conn, template_csv())


def test_preview_reports_missing_columns(db):
    with db.connect() as conn:
        with pytest.raises(CsvImportError) as excinfo:
            preview_import(conn, 'canonical_title,status\nCeleste,released\n')
    message = str(excinfo.value)
    assert message.startswith('Missing columns: ')
    assert 'sort_title' in message
    assert 'canonical_title' not in message


def test_preview_resolves_slugs_and_counts_unresolved(db):
    text = _template_with(
        _csv_row(
            canonical_title='Celeste',
            primary_genre_slug='Platformer',
            additional_genre_slugs='puzzle, not-a-genre',
            engine_slug='unity',
            monetisation_model_slug='premium',
            coop_supported='TRUE',
            max_players_local='1',
        ),
        _csv_row(
            canonical_title='Mystery',
            sort_title='Mystery, The',
            status='in_development',
            engine_slug='made-up-engine',
        ),
    )
    with db.connect() as conn:
        preview = preview_import(conn, text)

    assert preview.row_count == 2
    assert preview.unresolved == 2
    assert preview.unresolved_slugs == ['made-up-engine', 'not-a-genre']
    assert preview.message == 'Parsed 2 row(s). 2 unresolved lookup(s).'

    first = preview.payloads[0]
    assert first['game']['canonical_title'] == 'Celeste'
    assert first['game']['sort_title'] == 'Celeste'
    assert first['game']['status'] == 'announced'
    assert first['game']['primary_genre_id'] is not None
    assert first['game']['engine_id'] is not None
    assert first['game']['coop_supported'] is True
    assert first['game']['is_vr_only'] is False
    assert first['game']['max_players_local'] == 1
    assert first['game']['max_players_online'] is None
    assert first['game']['synopsis_short'] is None
    assert len(first['additional_genre_ids']) == 1

    second = preview.payloads[1]['game']
    assert second['sort_title'] == 'Mystery, The'
    assert second['status'] == 'in_development'
    assert second['engine_id'] is None


def test_preview_all_resolved_message(db):
    text = _template_with(_csv_row(canonical_title='Hades', primary_genre_slug='action'))
    with db.connect() as conn:
        preview = preview_import(conn, text)
    assert preview.unresolved == 0
    assert preview.message == 'Parsed 1 row(s). All lookups resolved.'


def test_template_download(auth_client):
    response = auth_client.get('/api/games/template.csv')
    assert response.status_code == 200
    assert response.mimetype == 'text/csv'
    assert 'games_template.csv' in response.headers['Content-Disposition']
    assert response.get_data(as_text=True) == template_csv()


def test_import_endpoint_returns_preview(auth_client):
    text = _template_with(_csv_row(canonical_title='Hades', engine_slug='nope'))
    response = auth_client.post(
        '/api/games/import',
        data={'file': (io.BytesIO(text.encode('utf-8')), 'games.csv')},
        content_type='multipart/form-data',
    )
    assert response.status_code == 200
    data = response.get_json()
    assert data['rows'] == 1
    assert data['unresolved'] == 1
    assert data['message'] == 'Parsed 1 row(s). 1 unresolved lookup(s).'


def test_import_endpoint_requires_file(auth_client):
    response = auth_client.post('/api/games/import', data={}, content_type='multipart/form-data')
    assert response.status_code == 400
    assert response.get_json() == {'error': 'No file uploaded'}


def test_import_endpoint_reports_missing_columns(auth_client):
    response = auth_client.post(
        '/api/games/import',
        data={'file': (io.BytesIO(b'canonical_title\nHades\n'), 'games.csv')},
        content_type='multipart/form-data',
    )
    assert response.status_code == 400
    assert response.get_json()['error'].startswith('Missing columns: ')
