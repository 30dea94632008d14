"""
Tests for the HTTP clients: request signing, payload shape, reply parsing
and how transport failures map onto the error taxonomy.
"""
import asyncio
import hashlib
import hmac
import io
import urllib.error

import pytest

from inkmath.clients import stroke_service, vision_service
from inkmath.clients.stroke_service import StrokeServiceClient, compute_hmac, extract_label
from inkmath.clients.vision_service import VisionReply, VisionServiceClient, clean_answer, parse_reply
from inkmath.engine.errors import AuthorizationFailure, ConfigurationMissing, TransientServiceError
from inkmath.engine.recognizers import looks_like_math
from inkmath.protocol.messages import Sample, Stroke


def _stroke():
    return Stroke(samples=(Sample(x=0, y=0, t=0), Sample(x=10, y=5, t=10, p=0.7)))


def _http_error(code: int) -> urllib.error.HTTPError:
    return urllib.error.HTTPError("http://test", code, "err", {}, io.BytesIO(b"denied"))


class TestStrokeService:
    def test_hmac_is_sha512_over_concatenated_keys(self):
        expected = hmac.new(b"appsecret", b"{}", hashlib.sha512).hexdigest()
        assert compute_hmac("{}", "app", "secret") == expected

    def test_payload(self):
        client = StrokeServiceClient("app", "secret", dpi=120)
        payload = client.build_payload([_stroke()])
        assert payload["xDPI"] == payload["yDPI"] == 120
        assert payload["contentType"] == "Math"
        assert payload["conversionState"] == "DIGITAL_EDIT"
        (group,) = payload["strokeGroups"]
        assert group["strokes"][0]["x"] == [0, 10]
        assert group["strokes"][0]["p"] == [0.5, 0.7]

    def test_request_is_signed(self, monkeypatch):
        seen = {}

        def fake_post(*, url, body, headers, timeout_s):
            seen.update(body=body, headers=headers)
            return {"expressions": [{"label": "1+1"}]}

        monkeypatch.setattr(stroke_service, "_post_sync", fake_post)
        client = StrokeServiceClient("app", "secret")

        assert asyncio.run(client.recognize([_stroke()])) == "1+1"
        assert seen["headers"]["applicationKey"] == "app"
        assert seen["headers"]["hmac"] == compute_hmac(seen["body"].decode("utf-8"), "app", "secret")

    def test_label_from_first_expression(self):
        assert extract_label({"expressions": [{"label": "2+2"}, {"label": "x"}]}) == "2+2"

    def test_label_found_in_nested_items(self):
        data = {"expressions": [{"items": [{"children": [{"latex": r"\frac{1}{2}"}]}]}]}
        assert extract_label(data) == r"\frac{1}{2}"

    def test_no_label(self):
        assert extract_label({"expressions": []}) is None
        assert extract_label([]) is None

    def test_unconfigured_client_raises(self):
        client = StrokeServiceClient(None, "secret")
        assert not client.configured
        with pytest.raises(ConfigurationMissing):
            asyncio.run(client.recognize([_stroke()]))

    @pytest.mark.parametrize(
        "error, expected",
        [
            (_http_error(401), AuthorizationFailure),
            (_http_error(500), TransientServiceError),
            (urllib.error.URLError("no route"), TransientServiceError),
            (ValueError("not json"), TransientServiceError),
        ],
    )
    def test_error_mapping(self, monkeypatch, error, expected):
        def fake_post(**kwargs):
            raise error

        monkeypatch.setattr(stroke_service, "_post_sync", fake_post)
        client = StrokeServiceClient("app", "secret")
        with pytest.raises(expected) as info:
            asyncio.run(client.recognize([_stroke()]))
        assert info.value.backend == "stroke"

    def test_server_error_keeps_status(self, monkeypatch):
        def fake_post(**kwargs):
            raise _http_error(503)

        monkeypatch.setattr(stroke_service, "_post_sync", fake_post)
        with pytest.raises(TransientServiceError) as info:
            asyncio.run(StrokeServiceClient("app", "secret").recognize([_stroke()]))
        assert info.value.status == 503


class TestParseReply:
    @pytest.mark.parametrize("text", [None, "", "NOT_MATH", "incomplete", "UNCLEAR."])
    def test_status_words(self, text):
        assert parse_reply(text) is None

    def test_unknown_answer_is_rejected(self):
        assert parse_reply("EXPRESSION: hello world, ANSWER: ?") is None

    def test_plain_reply(self):
        assert parse_reply("EXPRESSION: 36 + 15, ANSWER: 51") == VisionReply("36 + 15", "51")

    def test_markdown_is_stripped(self):
        reply = parse_reply("**EXPRESSION:** `2x + 5 = 15`, **ANSWER:** x = 5\nextra chatter")
        assert reply == VisionReply("2x + 5 = 15", "x = 5")

    def test_missing_answer(self):
        assert parse_reply("EXPRESSION: 1 + 1") is None


class TestCleanAnswer:
    def test_prefix_removed(self):
        assert clean_answer("Answer: 42") == "42"

    def test_empty_becomes_question_mark(self):
        assert clean_answer("") == "?"
        assert clean_answer(None) == "?"


class TestVisionService:
    def test_recognize_image(self, monkeypatch):
        seen = {}

        def fake_post(*, url, headers, timeout_s, payload):
            seen.update(url=url, headers=headers, payload=payload)
            return {"choices": [{"message": {"content": "EXPRESSION: 2 + 2, ANSWER: 4"}}]}

        monkeypatch.setattr(vision_service, "_post_sync", fake_post)
        client = VisionServiceClient("http://llm.test/", "k", model="m")

        reply = asyncio.run(client.recognize_image("data:image/png;base64,AAAA"))

        assert reply == VisionReply("2 + 2", "4")
        assert seen["url"] == "http://llm.test/chat/completions"
        assert seen["headers"]["Authorization"] == "Bearer k"
        assert seen["payload"]["model"] == "m"

    def test_no_auth_header_without_key(self, monkeypatch):
        seen = {}

        def fake_post(*, url, headers, timeout_s, payload):
            seen.update(headers=headers)
            return {"choices": [{"message": {"content": "7"}}]}

        monkeypatch.setattr(vision_service, "_post_sync", fake_post)
        assert asyncio.run(VisionServiceClient("http://llm.test").solve("3+4")) == "7"
        assert "Authorization" not in seen["headers"]

    def test_solve_passes_known_variables(self, monkeypatch):
        seen = {}

        def fake_post(*, url, headers, timeout_s, payload):
            seen.update(payload=payload)
            return {"choices": [{"message": {"content": "Answer: 10"}}]}

        monkeypatch.setattr(vision_service, "_post_sync", fake_post)
        answer = asyncio.run(VisionServiceClient("http://llm.test").solve("x+y", {"x": "4", "y": "6"}))

        assert answer == "10"
        user_msg = seen["payload"]["messages"][-1]["content"]
        assert "x = 4" in user_msg and "y = 6" in user_msg

    def test_rejects_non_data_url(self):
        with pytest.raises(ValueError):
            asyncio.run(VisionServiceClient("http://llm.test").recognize_image("http://example.com/a.png"))

    def test_unconfigured_client_raises(self):
        with pytest.raises(ConfigurationMissing):
            asyncio.run(VisionServiceClient(None).solve("1+1"))

    def test_malformed_completion(self, monkeypatch):
        monkeypatch.setattr(vision_service, "_post_sync", lambda **kwargs: {"choices": []})
        with pytest.raises(TransientServiceError):
            asyncio.run(VisionServiceClient("http://llm.test").solve("1+1"))

    def test_unauthorized(self, monkeypatch):
        def fake_post(**kwargs):
            raise _http_error(401)

        monkeypatch.setattr(vision_service, "_post_sync", fake_post)
        with pytest.raises(AuthorizationFailure):
            asyncio.run(VisionServiceClient("http://llm.test").solve("1+1"))


class TestLooksLikeMath:
    @pytest.mark.parametrize("text", ["3 + 4", "2x + 5 = 15", "x^2 - 1", "12 ÷ 4"])
    def test_math(self, text):
        assert looks_like_math(text)

    @pytest.mark.parametrize("text", [None, "", "hello world", "42", "the sum of 3 + 4 apples"])
    def test_not_math(self, text):
        assert not looks_like_math(text)
