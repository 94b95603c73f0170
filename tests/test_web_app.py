"""
Unit Tests for the admin Flask application.

Testing Strategy:
    Uses Flask's test client with the real in-memory session store. The
    Micropub client is a MagicMock, and endpoint discovery or the token
    endpoint are patched where a test goes through the login flow.
"""
import io
from unittest.mock import MagicMock, patch

import pytest

from conftest import make_http_response, make_http_session
from indieauth.discovery import DiscoveredEndpoints
from micropub.client import ArchiveYear, MediaItem, MediaList, MicropubResponse, PostList
from session.errors import TransportError
from session.response import Response
from web.app import create_app, to_flask_response


@pytest.fixture
def micropub_client():
    return MagicMock()


@pytest.fixture
def app(config, store, micropub_client):
    app = create_app(config, session_store=store, micropub_client=micropub_client)
    app.config["TESTING"] = True
    return app


@pytest.fixture
def client(app):
    with app.test_client(use_cookies=False) as client:
        yield client


def _cookie(uid):
    return {"Cookie": f"sessionid={uid}"}


def test_health_check(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.get_json() == {"status": "healthy"}


def test_login_page(client):
    assert client.get("/login").status_code == 200


class TestLogin:

    def test_login_init_redirects(self, client, store):
        endpoints = DiscoveredEndpoints(authorization_endpoint="https://auth.example.com/auth")

        with patch("indieauth.client.discover_endpoints", return_value=endpoints):
            response = client.post("/login-init", data={"me": "https://example.com/"})

        assert response.status_code == 303
        assert response.headers["Location"].startswith("https://auth.example.com/auth?")
        assert len(store) == 1

    def test_login_init_invalid_me(self, client):
        response = client.post("/login-init", data={"me": "example"})

        assert response.status_code == 400
        assert response.get_json()["status"] == "error"

    def test_login_callback_sets_cookie(self, client, store, pending_session):
        session = make_http_session()
        session.post.return_value = make_http_response(200, json_data={
            "me": "https://example.com/", "scope": "create", "access_token": "tok", "token_type": "Bearer",
        })

        with patch("indieauth.client._build_session", return_value=session):
            response = client.get("/login-callback", query_string={"state": pending_session.uid, "code": "c"})

        assert response.status_code == 303
        assert response.headers["Location"] == "/composer"
        assert f"sessionid={pending_session.uid}" in response.headers["Set-Cookie"]
        assert store.fetch_by_id(pending_session.uid).access_token == "tok"

    def test_login_callback_unknown_state(self, client):
        with patch("indieauth.client._build_session") as build:
            response = client.get("/login-callback", query_string={"state": "unknown", "code": "c"})

        assert response.status_code == 500
        build.assert_not_called()


class TestComposerPages:

    @pytest.mark.parametrize("method, path", [
        ("get", "/composer"),
        ("get", "/composer/addlocation"),
        ("post", "/composer/addlocation"),
        ("post", "/composer/media/device"),
        ("post", "/submit"),
    ])
    def test_missing_cookie_redirects_to_login(self, client, method, path):
        response = getattr(client, method)(path)

        assert response.status_code == 303
        assert response.headers["Location"] == "/login"

    def test_show_composer(self, client, authed_session):
        response = client.get("/composer", headers=_cookie(authed_session.uid))

        assert response.status_code == 200
        assert response.get_json()["user"]["name"] == "Jay"
        assert response.get_json()["photos"] == []

    def test_show_composer_unknown_session(self, client):
        response = client.get("/composer", headers=_cookie("missing"))

        assert response.status_code == 500

    def test_add_location(self, client, store, authed_session):
        response = client.post(
            "/composer/addlocation",
            data={"locality": "Leeds", "region": "", "country": "UK", "lat": "53.8", "lng": "-1.5"},
            headers=_cookie(authed_session.uid),
        )

        assert response.status_code == 303
        assert response.headers["Location"] == "/composer"
        assert store.fetch_by_id(authed_session.uid).composer_data.location.to_human() == "Leeds, UK"

    def test_search_locations(self, client, authed_session):
        response = client.get("/composer/addlocation?q=Leeds", headers=_cookie(authed_session.uid))

        assert response.status_code == 200
        assert response.get_json() == {"locations": []}

    def test_upload_from_device(self, config, store, authed_session):
        received = []

        def add_photos(session_id, files):
            received.extend((session_id, f.filename, f.stream.read()) for f in files)
            return Response(status_code=303, headers={"Location": "/composer"})

        composer = MagicMock()
        composer.add_photos.side_effect = add_photos
        app = create_app(config, session_store=store, composer=composer, micropub_client=MagicMock())

        with app.test_client(use_cookies=False) as client:
            response = client.post(
                "/composer/media/device",
                data={"photo": [(io.BytesIO(b"one"), "a.jpg"), (io.BytesIO(b"two"), "b.jpg")]},
                headers=_cookie(authed_session.uid),
                content_type="multipart/form-data",
            )

        assert response.status_code == 303
        assert received == [
            (authed_session.uid, "a.jpg", b"one"),
            (authed_session.uid, "b.jpg", b"two"),
        ]

    def test_add_gallery_media(self, client, store, authed_session):
        response = client.post(
            "/composer/media",
            data={"url": "https://m.example.com/g.jpg", "datetime": "2019-09-01T10:00:00Z", "lat": "1", "lng": "2"},
            headers=_cookie(authed_session.uid),
        )

        assert response.status_code == 303
        photos = store.fetch_by_id(authed_session.uid).composer_data.photos
        assert photos[0].url == "https://m.example.com/g.jpg"

    def test_add_gallery_media_requires_session(self, client):
        assert client.post("/composer/media").status_code == 403
        assert client.post("/composer/media", headers=_cookie("missing")).status_code == 403

    def test_submit(self, client, store, micropub_client, authed_session):
        micropub_client.send_request.return_value = MicropubResponse(201, "https://example.com/notes/1")

        response = client.post(
            "/submit",
            data={"content": "Hello", "h": "entry"},
            headers=_cookie(authed_session.uid),
        )

        assert response.status_code == 201
        assert response.headers["Location"] == "https://example.com/notes/1"
        assert response.get_json() == {"status": "success", "location": "https://example.com/notes/1"}

    def test_submit_rejected(self, client, micropub_client, authed_session):
        micropub_client.send_request.return_value = MicropubResponse(400, "")

        response = client.post("/submit", data={"content": "Hello", "h": "entry"}, headers=_cookie(authed_session.uid))

        assert response.status_code == 400
        assert response.get_json()["status"] == "error"


class TestBrowsing:

    @pytest.mark.parametrize("path", ["/composer/media/gallery", "/queryposts"])
    def test_requires_cookie(self, client, path):
        assert client.get(path).status_code == 403

    @pytest.mark.parametrize("path", ["/composer/media/gallery", "/queryposts"])
    def test_unknown_session_is_forbidden(self, client, path):
        assert client.get(path, headers=_cookie("missing")).status_code == 403

    def test_gallery(self, client, micropub_client, authed_session):
        micropub_client.query_years_list.return_value = [ArchiveYear("2019", 1)]
        micropub_client.query_months_list.return_value = []
        micropub_client.query_media_list.return_value = MediaList(items=[MediaItem(url="https://m.example.com/1")])

        response = client.get("/composer/media/gallery", headers=_cookie(authed_session.uid))

        assert response.status_code == 200
        body = response.get_json()
        assert body["current_year"] == "2019"
        assert body["media"][0]["url"] == "https://m.example.com/1"
        micropub_client.query_years_list.assert_called_once_with("https://media.example.com/upload", "tok-123")

    def test_gallery_single_item(self, client, micropub_client, authed_session):
        micropub_client.query_media_url.return_value = MediaItem(url="https://m.example.com/1", mime_type="image/jpeg")

        response = client.get(
            "/composer/media/gallery?url=https://m.example.com/1", headers=_cookie(authed_session.uid)
        )

        assert response.status_code == 200
        assert response.get_json()["mime_type"] == "image/jpeg"

    def test_gallery_single_item_failure(self, client, micropub_client, authed_session):
        micropub_client.query_media_url.side_effect = TransportError("down")

        response = client.get("/composer/media/gallery?url=x", headers=_cookie(authed_session.uid))

        assert response.status_code == 500

    def test_query_posts(self, client, micropub_client, authed_session):
        micropub_client.query_post_list.return_value = PostList(
            items=[{"type": ["h-entry"], "properties": {"content": ["hi"]}}]
        )
        micropub_client.query_years_list.return_value = []

        response = client.get("/queryposts?after=abc", headers=_cookie(authed_session.uid))

        assert response.status_code == 200
        assert response.get_json()["posts"][0]["content"] == "hi"
        micropub_client.query_post_list.assert_called_once_with("https://example.com/micropub", "tok-123", "abc")

    def test_query_posts_failure(self, client, micropub_client, authed_session):
        micropub_client.query_post_list.side_effect = TransportError("down")

        response = client.get("/queryposts", headers=_cookie(authed_session.uid))

        assert response.status_code == 500


def test_unexpected_error_is_json_500(config, store, authed_session):
    composer = MagicMock()
    composer.show_composer.side_effect = RuntimeError("boom")
    app = create_app(config, session_store=store, composer=composer, micropub_client=MagicMock())

    with app.test_client(use_cookies=False) as client:
        response = client.get("/composer", headers=_cookie(authed_session.uid))

    assert response.status_code == 500
    assert response.get_json() == {"status": "error", "message": "Internal server error"}


def test_unknown_route_is_404(client):
    assert client.get("/nope").status_code == 404


def test_to_flask_response_error_without_body(app):
    with app.app_context():
        response = to_flask_response(Response(status_code=403))

    assert response.status_code == 403
    assert response.get_json() == {"status": "error", "message": "Forbidden"}
