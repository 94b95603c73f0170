"""
Unit Tests for composer staging and submission.

The Micropub client is a MagicMock; the session store is the real
in-memory store so persistence is observed through fetch_by_id.
"""
import io
import re
from unittest.mock import MagicMock, patch

import pytest

from micropub.client import MediaEndpointResponse, MicropubResponse, UploadError, UploadedFile
from micropub.composer import Composer, Geocoder, NullGeocoder, build_post_form
from session.errors import SessionNotFound, StoreError, TransportError
from session.models import ComposerData, Location


def _file(name):
    return UploadedFile(name, io.BytesIO(b"data"), "image/jpeg")


@pytest.fixture
def client():
    return MagicMock()


@pytest.fixture
def composer(store, client):
    return Composer(store, client)


class TestAddPhotos:

    def test_failed_upload_is_skipped(self, composer, client, store, authed_session):
        client.upload_to_media_server.side_effect = [
            MediaEndpointResponse(url="https://m.example.com/a.jpg", location="geo:1.5,2.5", published="P1"),
            UploadError("too large"),
            MediaEndpointResponse(url="https://m.example.com/c.jpg", location="", published=""),
        ]

        response = composer.add_photos(authed_session.uid, [_file("a.jpg"), _file("b.jpg"), _file("c.jpg")])

        assert response.status_code == 303
        assert response.location == "/composer"
        photos = store.fetch_by_id(authed_session.uid).composer_data.photos
        assert [(p.url, p.published) for p in photos] == [
            ("https://m.example.com/a.jpg", "P1"),
            ("https://m.example.com/c.jpg", ""),
        ]
        assert photos[0].location == Location(lat=1.5, lng=2.5)
        assert store.fetch_by_id(authed_session.uid).composer_data.published == "P1"
        assert client.upload_to_media_server.call_count == 3

    def test_second_of_two_fails(self, composer, client, store, authed_session):
        client.upload_to_media_server.side_effect = [
            MediaEndpointResponse(url="A", location="", published="P1"),
            TransportError("refused"),
        ]

        composer.add_photos(authed_session.uid, [_file("a.jpg"), _file("b.jpg")])

        photos = store.fetch_by_id(authed_session.uid).composer_data.photos
        assert [(p.url, p.published) for p in photos] == [("A", "P1")]

    def test_unknown_session_is_500_without_upload(self, composer, client):
        response = composer.add_photos("missing", [_file("a.jpg")])

        assert response.status_code == 500
        client.upload_to_media_server.assert_not_called()

    def test_persist_failure_continues_with_next_file(self, client, authed_session):
        store = MagicMock()
        store.fetch_by_id.return_value = authed_session
        store.create.side_effect = [StoreError("disk full"), None]
        client.upload_to_media_server.side_effect = [
            MediaEndpointResponse(url="A"),
            MediaEndpointResponse(url="B"),
        ]

        response = Composer(store, client).add_photos(authed_session.uid, [_file("a"), _file("b")])

        assert response.status_code == 303
        saved = store.create.call_args_list[-1].args[0]
        assert [p.url for p in saved.composer_data.photos] == ["A", "B"]


class TestAddMedia:

    def test_stages_gallery_item(self, composer, client, store, authed_session):
        response = composer.add_media(
            authed_session.uid, "https://m.example.com/g.jpg", "2019-09-01T10:00:00Z", "53.8", "-1.5"
        )

        assert response.status_code == 303
        composer_data = store.fetch_by_id(authed_session.uid).composer_data
        assert composer_data.photos[0].url == "https://m.example.com/g.jpg"
        assert composer_data.photos[0].location == Location(lat=53.8, lng=-1.5)
        assert composer_data.published == "2019-09-01T10:00:00Z"
        client.upload_to_media_server.assert_not_called()

    def test_unparseable_coordinates(self, composer, store, authed_session):
        composer.add_media(authed_session.uid, "https://m.example.com/g.jpg", "", "north", "")

        assert store.fetch_by_id(authed_session.uid).composer_data.photos[0].location == Location()

    def test_non_finite_coordinates_are_dropped(self, composer, store, authed_session):
        composer.add_media(authed_session.uid, "https://m.example.com/g.jpg", "", "nan", "inf")
        composer.add_location(authed_session.uid, "Leeds", "", "UK", "inf", "-inf")

        composer_data = store.fetch_by_id(authed_session.uid).composer_data
        assert composer_data.photos[0].location == Location()
        assert not composer_data.location.has_lat_lng()


class TestAddLocation:

    def test_overwrites_location(self, composer, store, authed_session):
        composer.add_location(authed_session.uid, "Leeds", "Yorkshire", "UK", "53.8", "-1.5")
        response = composer.add_location(authed_session.uid, "York", "", "UK", "bad", "")

        assert response.status_code == 303
        assert store.fetch_by_id(authed_session.uid).composer_data.location == Location(
            locality="York", region="", country="UK", lat=0.0, lng=0.0
        )

    def test_store_failure_is_500(self, client, authed_session):
        store = MagicMock()
        store.fetch_by_id.return_value = authed_session
        store.create.side_effect = StoreError("disk full")

        response = Composer(store, client).add_location(authed_session.uid, "Leeds", "", "", "1", "2")

        assert response.status_code == 500

    def test_unknown_session_is_500(self, composer):
        assert composer.add_location("missing", "Leeds", "", "", "1", "2").status_code == 500


class TestSubmitPost:

    @pytest.fixture
    def staged(self, store, authed_session):
        usess = (
            authed_session
            .with_photo("https://m.example.com/a.jpg", "2024-01-01T10:00:00Z", Location())
            .with_photo("https://m.example.com/b.jpg", "", Location())
            .with_location(Location(locality="Leeds", lat=53.8, lng=-1.5))
        )
        store.create(usess)
        return usess

    def test_success_clears_composer(self, composer, client, store, staged):
        client.send_request.return_value = MicropubResponse(201, "https://example.com/notes/1")

        response = composer.submit_post(staged.uid, "Hello", "entry")

        assert response.status_code == 201
        assert response.location == "https://example.com/notes/1"
        form, endpoint, token = client.send_request.call_args.args
        assert form == [
            ("content", "Hello"),
            ("h", "entry"),
            ("photo", "https://m.example.com/a.jpg"),
            ("photo", "https://m.example.com/b.jpg"),
            ("published", "2024-01-01T10:00:00Z"),
            ("location", "geo:53.8,-1.5"),
        ]
        assert endpoint == "https://example.com/micropub"
        assert token == "tok-123"
        assert store.fetch_by_id(staged.uid).composer_data == ComposerData()

    def test_rejection_keeps_composer(self, composer, client, store, staged):
        client.send_request.return_value = MicropubResponse(400, "")

        response = composer.submit_post(staged.uid, "Hello", "entry")

        assert response.status_code == 400
        assert store.fetch_by_id(staged.uid).composer_data == staged.composer_data

    def test_transport_failure_keeps_composer(self, composer, client, store, staged):
        client.send_request.side_effect = TransportError("refused")

        response = composer.submit_post(staged.uid, "Hello", "entry")

        assert response.status_code == 500
        assert store.fetch_by_id(staged.uid).composer_data == staged.composer_data

    def test_unknown_session_is_500(self, composer, client):
        assert composer.submit_post("missing", "Hello", "entry").status_code == 500
        client.send_request.assert_not_called()


class TestBuildPostForm:

    def test_published_defaults_to_now(self, authed_session):
        with patch("micropub.composer._now", return_value="2024-05-05T12:00:00+00:00"):
            form = build_post_form(authed_session, "Hi", "entry")

        assert form == [("content", "Hi"), ("h", "entry"), ("published", "2024-05-05T12:00:00+00:00")]

    def test_now_is_rfc3339(self, authed_session):
        published = dict(build_post_form(authed_session, "Hi", "entry"))["published"]

        assert re.match(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}\+00:00$", published)

    def test_location_omitted_without_coordinates(self, authed_session):
        usess = authed_session.with_location(Location(locality="Leeds"))

        assert "location" not in dict(build_post_form(usess, "Hi", "entry"))


class TestViews:

    def test_show_composer(self, composer, store, authed_session):
        store.create(
            authed_session
            .with_photo("https://m.example.com/a.jpg", "2024-01-01T10:00:00Z", Location())
            .with_location(Location(locality="Leeds", country="UK"))
        )

        view = composer.show_composer(authed_session.uid)

        assert view["photos"][0]["url"] == "https://m.example.com/a.jpg"
        assert view["published"] == "2024-01-01T10:00:00Z"
        assert view["location"] == "Leeds, UK"
        assert view["user"]["name"] == "Jay"

    def test_show_composer_unknown_session(self, composer):
        with pytest.raises(SessionNotFound):
            composer.show_composer("missing")

    def test_search_locations_uses_geocoder(self, store, client, authed_session):
        geocoder = MagicMock(spec=Geocoder)
        geocoder.lookup.return_value = [Location(locality="Leeds", lat=53.8, lng=-1.5)]

        result = Composer(store, client, geocoder=geocoder).search_locations(authed_session.uid, "Leeds")

        assert result[0].locality == "Leeds"
        geocoder.lookup.assert_called_once_with("Leeds")

    def test_null_geocoder(self, composer, authed_session):
        assert isinstance(composer.geocoder, NullGeocoder)
        assert composer.search_locations(authed_session.uid, "Leeds") == []
