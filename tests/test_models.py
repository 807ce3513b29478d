"""Tests for the data model: auth union, JSON field names, ids."""

import pytest
from pydantic import ValidationError

from apisandbox.models import (
    ApiKeyAuth,
    BasicAuth,
    BearerAuth,
    BearerCredentials,
    BodyType,
    CollectionItem,
    ErrorKind,
    HttpMethod,
    NoAuth,
    PairList,
    RequestDefinition,
    generate_id,
    get_id_prefix,
    is_valid_id,
    parse_auth,
    switch_auth_type,
)
from tests.conftest import make_response


class TestAuthUnion:
    def test_parse_nested_layout(self):
        auth = parse_auth({"type": "bearer", "bearer": {"token": "t"}})
        assert isinstance(auth, BearerAuth)
        assert auth.bearer.token == "t"

    def test_parse_api_key_camel_case(self):
        auth = parse_auth(
            {"type": "api-key", "apiKey": {"key": "k", "value": "v", "addTo": "query"}}
        )
        assert isinstance(auth, ApiKeyAuth)
        assert auth.api_key.add_to == "query"

    def test_stale_payloads_dropped_on_load(self):
        auth = parse_auth(
            {
                "type": "basic",
                "basic": {"username": "u", "password": "p"},
                "bearer": {"token": "leaked"},
            }
        )
        assert isinstance(auth, BasicAuth)
        assert "bearer" not in auth.to_dict()

    def test_unknown_type_rejected(self):
        with pytest.raises(ValidationError):
            parse_auth({"type": "digest"})

    def test_switch_clears_previous_payload(self):
        bearer = BearerAuth(bearer=BearerCredentials(token="secret"))
        basic = switch_auth_type(bearer, "basic")
        assert isinstance(basic, BasicAuth)
        assert basic.basic.username == ""
        assert "secret" not in str(basic.to_dict())

    def test_switch_round_trip_through_json(self):
        bearer = BearerAuth(bearer=BearerCredentials(token="secret"))
        basic = switch_auth_type(bearer, "basic")
        reloaded = parse_auth(basic.to_dict())
        assert reloaded == basic
        assert reloaded.to_dict() == {
            "type": "basic",
            "basic": {"username": "", "password": ""},
        }

    def test_switch_back_starts_blank(self):
        bearer = BearerAuth(bearer=BearerCredentials(token="secret"))
        again = switch_auth_type(switch_auth_type(bearer, "none"), "bearer")
        assert again.bearer.token == ""

    def test_switch_same_type_copies(self):
        bearer = BearerAuth(bearer=BearerCredentials(token="secret"))
        same = switch_auth_type(bearer, "bearer")
        assert same == bearer
        assert same is not bearer

    def test_switch_unknown_type(self):
        with pytest.raises(ValueError):
            switch_auth_type(NoAuth(), "kerberos")


class TestRequestDefinition:
    def test_camel_case_document(self):
        req = RequestDefinition.model_validate(
            {
                "id": "req_1",
                "name": "n",
                "method": "POST",
                "url": "https://x.com",
                "queryParams": [{"id": "p1", "key": "q", "value": "1", "enabled": True}],
                "headers": [],
                "body": "{}",
                "bodyType": "json",
                "auth": {"type": "bearer", "bearer": {"token": "t"}},
            }
        )
        assert req.method == HttpMethod.POST
        assert req.body_type == BodyType.JSON
        assert req.query_params[0].key == "q"
        assert isinstance(req.auth, BearerAuth)

    def test_to_dict_uses_document_names(self):
        data = RequestDefinition(id="r", url="https://x.com").to_dict()
        assert data["queryParams"] == []
        assert data["bodyType"] == "none"
        assert "auth" not in data

    def test_invalid_method_rejected(self):
        with pytest.raises(ValidationError):
            RequestDefinition(method="TRACE")


class TestApiResponse:
    def test_status_zero_is_client_error(self):
        assert make_response(status=0).is_client_error
        assert not make_response(status=404).is_client_error

    def test_error_kind_serialized(self):
        resp = make_response(status=0)
        resp.error_kind = ErrorKind.TIMEOUT
        assert resp.to_dict()["errorKind"] == "timeout"


class TestCollectionItem:
    def test_walk_nested(self):
        tree = CollectionItem.model_validate(
            {
                "id": "c1",
                "name": "root",
                "type": "folder",
                "children": [
                    {"id": "c2", "name": "leaf", "type": "request", "request": {"id": "r1"}},
                    {"id": "c3", "name": "sub", "type": "folder", "children": []},
                ],
            }
        )
        assert [n.id for n in tree.walk()] == ["c1", "c2", "c3"]


class TestIds:
    def test_generate_id_format(self):
        value = generate_id("req")
        assert is_valid_id(value)
        assert get_id_prefix(value) == "req"

    def test_invalid_ids(self):
        assert not is_valid_id("")
        assert not is_valid_id("invalid")
        assert not is_valid_id("a_notanumber_x")
        assert get_id_prefix("nope") is None


class TestPairList:
    def test_set_replaces_first_and_drops_rest(self):
        pairs = PairList([("a", "1"), ("b", "2"), ("a", "3")])
        pairs.set("a", "x")
        assert pairs.items() == [("a", "x"), ("b", "2")]

    def test_case_insensitive_lookup(self):
        headers = PairList([("Content-Type", "text/plain")], case_insensitive=True)
        assert headers.has("content-type")
        assert "CONTENT-TYPE" in headers

    def test_case_sensitive_by_default(self):
        query = PairList([("Q", "1")])
        assert not query.has("q")

    def test_remove(self):
        pairs = PairList([("a", "1"), ("b", "2"), ("a", "3")])
        pairs.remove("a")
        assert pairs.items() == [("b", "2")]
