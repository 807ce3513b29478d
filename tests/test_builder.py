"""Tests for request assembly: URL, query, headers, auth, body."""

import pytest

from apisandbox.builder import (
    BuildError,
    InvalidBodyError,
    InvalidUrlError,
    RequestBuilder,
    build_request,
)
from apisandbox.models import (
    ApiKeyAuth,
    ApiKeyCredentials,
    BearerAuth,
    BearerCredentials,
    ErrorKind,
)
from tests.conftest import make_request, var


class TestUrl:
    def test_query_param_substituted(self):
        req = make_request(
            url="https://api.example.com/search",
            query_params=[var("q", "{{term}}")],
        )
        built = build_request(req, [var("term", "hello")])
        assert built.url == "https://api.example.com/search?q=hello"

    def test_url_variable(self):
        req = make_request(url="{{base}}/items")
        built = build_request(req, [var("base", "https://api.example.com")])
        assert built.url == "https://api.example.com/items"

    def test_existing_query_kept_and_params_appended(self):
        req = make_request(url="https://x.com/a?x=1", query_params=[var("y", "2")])
        assert build_request(req).url == "https://x.com/a?x=1&y=2"

    def test_duplicate_params_kept(self):
        req = make_request(url="https://x.com/a?tag=1", query_params=[var("tag", "2")])
        assert build_request(req).url == "https://x.com/a?tag=1&tag=2"

    def test_disabled_param_skipped(self):
        req = make_request(query_params=[var("a", "1"), var("b", "2", enabled=False)])
        assert build_request(req).url == "https://api.example.com/items?a=1"

    def test_param_values_encoded(self):
        req = make_request(query_params=[var("q", "a b&c")])
        assert build_request(req).url.endswith("?q=a+b%26c")

    def test_no_params_no_question_mark(self):
        assert build_request(make_request()).url == "https://api.example.com/items"

    def test_invalid_url_rejected(self):
        with pytest.raises(InvalidUrlError) as exc_info:
            build_request(make_request(url="not a url"))
        assert exc_info.value.kind == ErrorKind.INVALID_URL
        assert "not a url" in exc_info.value.message

    def test_unresolved_variable_rejected(self):
        with pytest.raises(InvalidUrlError):
            build_request(make_request(url="{{base}}/items"))

    def test_non_http_scheme_rejected(self):
        with pytest.raises(InvalidUrlError):
            build_request(make_request(url="ftp://example.com/file"))

    def test_empty_url_rejected(self):
        with pytest.raises(InvalidUrlError) as exc_info:
            build_request(make_request(url=""))
        assert "(empty)" in exc_info.value.message

    def test_script_stripped_from_url(self):
        req = make_request(url="https://x.com/<script>alert(1)</script>")
        assert build_request(req).url == "https://x.com/"


class TestHeaders:
    def test_header_substituted(self):
        req = make_request(headers=[var("X-Trace", "{{trace}}")])
        built = build_request(req, [var("trace", "t-1")])
        assert built.header("x-trace") == "t-1"

    def test_disabled_header_skipped(self):
        req = make_request(headers=[var("X-A", "1", enabled=False)])
        assert build_request(req).headers == []

    def test_header_value_cannot_inject_lines(self):
        req = make_request(headers=[var("X-A", "v\r\nX-Evil: 1")])
        assert build_request(req).headers == [("X-A", "vX-Evil: 1")]

    def test_key_empty_after_sanitizing_dropped(self):
        req = make_request(headers=[var("!!!", "v"), var("X-Ok", "1")])
        assert build_request(req).headers == [("X-Ok", "1")]


class TestAuthStage:
    def test_auth_overrides_user_authorization(self):
        req = make_request(
            headers=[var("Authorization", "Bearer user")],
            auth=BearerAuth(bearer=BearerCredentials(token="{{tok}}")),
        )
        built = build_request(req, [var("tok", "secret")])
        assert built.headers == [("Authorization", "Bearer secret")]

    def test_api_key_in_query_overrides_param(self):
        req = make_request(
            query_params=[var("api_key", "old")],
            auth=ApiKeyAuth(api_key=ApiKeyCredentials(key="api_key", value="new", add_to="query")),
        )
        built = build_request(req)
        assert built.url == "https://api.example.com/items?api_key=new"
        assert built.headers == []

    def test_stages_can_be_inspected(self):
        req = make_request(
            query_params=[var("a", "1")],
            auth=ApiKeyAuth(api_key=ApiKeyCredentials(key="k", value="v", add_to="query")),
        )
        builder = RequestBuilder(req).resolve_url().add_query()
        assert builder.query.items() == [("a", "1")]
        builder.add_headers().apply_auth()
        assert builder.query.items() == [("a", "1"), ("k", "v")]


class TestBody:
    def test_get_never_has_body(self):
        req = make_request(method="GET", body='{"a": 1}', body_type="json")
        built = build_request(req)
        assert built.body is None
        assert built.header("Content-Type") is None

    def test_head_never_has_body(self):
        req = make_request(method="HEAD", body='{"a": 1}', body_type="json")
        assert build_request(req).body is None

    def test_json_body_substituted_with_default_content_type(self):
        req = make_request(method="POST", body='{"name": "{{name}}"}', body_type="json")
        built = build_request(req, [var("name", "amy")])
        assert built.body == '{"name": "amy"}'
        assert built.header("Content-Type") == "application/json"

    def test_user_content_type_kept(self):
        req = make_request(
            method="POST",
            body="{}",
            body_type="json",
            headers=[var("content-type", "application/vnd.api+json")],
        )
        built = build_request(req)
        assert built.headers == [("content-type", "application/vnd.api+json")]

    def test_json_body_sent_as_written(self):
        req = make_request(method="PUT", body="{not json", body_type="json")
        assert build_request(req).body == "{not json"

    def test_body_type_none_sends_nothing(self):
        req = make_request(method="POST", body='{"a": 1}', body_type="none")
        assert build_request(req).body is None

    def test_empty_body_sends_nothing(self):
        req = make_request(method="POST", body="", body_type="json")
        built = build_request(req)
        assert built.body is None
        assert built.header("Content-Type") is None

    def test_form_body_encoded(self):
        req = make_request(
            method="POST",
            body='{"user": "{{user}}", "n": 1, "ok": true, "none": null, "f": 2.0, "q": "a b"}',
            body_type="form-urlencoded",
        )
        built = build_request(req, [var("user", "admin")])
        assert built.body == "user=admin&n=1&ok=true&none=null&f=2&q=a+b"
        assert built.header("Content-Type") == "application/x-www-form-urlencoded"

    @pytest.mark.parametrize(
        "body",
        ["{bad", "[1, 2]", '"text"', '{"nested": {"a": 1}}', '{"list": [1]}'],
    )
    def test_form_body_rejected(self, body):
        req = make_request(method="POST", body=body, body_type="form-urlencoded")
        with pytest.raises(InvalidBodyError) as exc_info:
            build_request(req)
        assert exc_info.value.kind == ErrorKind.INVALID_BODY

    def test_build_requires_url_stage(self):
        with pytest.raises(BuildError):
            RequestBuilder(make_request()).build()


class TestBuiltRequest:
    def test_carries_id_and_method(self):
        built = build_request(make_request(id="req_9", method="DELETE"))
        assert built.request_id == "req_9"
        assert built.method == "DELETE"
