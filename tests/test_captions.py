"""Tests for the caption suggestion client using a stub HTTP session."""
import pytest
import requests

from instagrid import config
from instagrid.captions import CaptionClient, CaptionError, load_environment, parse_suggestions
from instagrid.utils.image_operations import to_data_url

DATA_URL = to_data_url(b"\xff\xd8\xff\xe0fakejpeg")

REPLY = (
    '{"caption": "Golden hour. Where would you go?", '
    '"hashtags": ["#sunset", "travel"], '
    '"modelTemplate": "Model: @{model_handle}", '
    '"photographerTemplate": "Photo: @{photographer_handle}", '
    '"placeTemplate": "{City}, {Country}"}'
)


class StubResponse:
    def __init__(self, status=200, body=None):
        self.status_code = status
        self._body = body

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.exceptions.HTTPError(f"{self.status_code} error", response=self)

    def json(self):
        if self._body is None:
            raise ValueError("no json")
        return self._body


class StubSession:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []

    def post(self, url, **kwargs):
        self.calls.append((url, kwargs))
        if self.error is not None:
            raise self.error
        return self.response


def test_parse_suggestions_tolerates_surrounding_prose():
    suggestions = parse_suggestions(f"Here you go:\n```json\n{REPLY}\n```")
    assert suggestions.caption == "Golden hour. Where would you go?"
    assert suggestions.hashtags == ["sunset", "travel"]
    assert suggestions.place_template == "{City}, {Country}"


@pytest.mark.parametrize("text", ["", "no json here", "{not json}", '{"hashtags": []}'])
def test_parse_suggestions_rejects_bad_replies(text):
    with pytest.raises(CaptionError):
        parse_suggestions(text)


def test_suggest_posts_image_and_parses_reply():
    session = StubSession(StubResponse(body={"content": [{"type": "text", "text": REPLY}]}))
    client = CaptionClient("test-key", session=session)
    suggestions = client.suggest(DATA_URL)

    assert suggestions.model_template == "Model: @{model_handle}"
    url, kwargs = session.calls[0]
    assert url == config.CAPTION_API_URL
    assert kwargs["headers"]["x-api-key"] == "test-key"
    image_block = kwargs["json"]["messages"][0]["content"][0]
    assert image_block["source"]["media_type"] == "image/jpeg"
    assert image_block["source"]["data"] == DATA_URL.split(",", 1)[1]


def test_missing_key_disables_client(monkeypatch):
    monkeypatch.delenv(config.CAPTION_API_KEY_ENV, raising=False)
    client = CaptionClient(session=StubSession())
    assert not client.is_available()
    with pytest.raises(CaptionError, match=config.CAPTION_API_KEY_ENV):
        client.suggest(DATA_URL)


def test_key_is_read_from_environment(monkeypatch):
    monkeypatch.setenv(config.CAPTION_API_KEY_ENV, "env-key")
    assert CaptionClient(session=StubSession()).api_key == "env-key"


def test_http_error_maps_to_status_message():
    client = CaptionClient("k", session=StubSession(StubResponse(status=401)))
    with pytest.raises(CaptionError, match="HTTP 401"):
        client.suggest(DATA_URL)


def test_network_error_is_wrapped():
    session = StubSession(error=requests.exceptions.ConnectionError("offline"))
    with pytest.raises(CaptionError, match="Failed to reach"):
        CaptionClient("k", session=session).suggest(DATA_URL)


def test_invalid_json_body():
    client = CaptionClient("k", session=StubSession(StubResponse(body=None)))
    with pytest.raises(CaptionError, match="invalid JSON"):
        client.suggest(DATA_URL)


def test_invalid_data_url_is_rejected():
    with pytest.raises(CaptionError):
        CaptionClient("k", session=StubSession()).suggest("https://example.com/a.jpg")


def test_load_environment_reads_dotenv(tmp_path, monkeypatch):
    monkeypatch.delenv(config.CAPTION_API_KEY_ENV, raising=False)
    env_file = tmp_path / ".env"
    env_file.write_text(f"{config.CAPTION_API_KEY_ENV}=from-dotenv\n")
    assert load_environment(env_file) is True
    assert CaptionClient(session=StubSession()).api_key == "from-dotenv"
