import json

import pytest

from groupproxy.core.errors import DecodeError, GroupFormatError
from groupproxy.transform.group_codec import GroupVersion, rewrite_group

SYNTHETIC_GROUP = "openshift.org"


def _rewrite(target_group, manifest):
    return json.loads(rewrite_group(target_group, json.dumps(manifest).encode("utf-8")))


class TestGroupVersion:
    @pytest.mark.parametrize(
        "value,group,version",
        [
            ("apps/v1", "apps", "v1"),
            ("v1", "", "v1"),
            ("openshift.org/v1beta1", "openshift.org", "v1beta1"),
            ("", "", ""),
            ("/", "", ""),
            ("/v1", "", "v1"),
        ],
    )
    def test_parse(self, value, group, version):
        assert GroupVersion.parse(value) == GroupVersion(group=group, version=version)

    def test_parse_rejects_more_than_one_slash(self):
        with pytest.raises(GroupFormatError) as exc:
            GroupVersion.parse("a/b/c")
        assert "a/b/c" in str(exc.value)

    def test_str_with_group(self):
        assert str(GroupVersion(group="apps", version="v1")) == "apps/v1"

    def test_str_without_group_is_bare_version(self):
        assert str(GroupVersion(group="", version="v1")) == "v1"


class TestRewriteGroup:
    def test_replaces_group_with_target(self):
        result = _rewrite("openshift.org", {"apiVersion": "apps/v1", "kind": "Foo"})
        assert result == {"apiVersion": "openshift.org/v1", "kind": "Foo"}

    def test_empty_target_strips_group(self):
        result = _rewrite("", {"apiVersion": "openshift.org/v1", "kind": "Foo"})
        assert result["apiVersion"] == "v1"

    def test_adds_group_to_bare_version(self):
        result = _rewrite(SYNTHETIC_GROUP, {"apiVersion": "v1", "kind": "Route"})
        assert result["apiVersion"] == "openshift.org/v1"

    def test_missing_api_version_is_unchanged(self):
        manifest = {"kind": "Foo", "spec": {"replicas": 3, "tags": ["a", "b"]}}
        assert _rewrite(SYNTHETIC_GROUP, manifest) == manifest
        assert _rewrite("", manifest) == manifest

    def test_non_string_api_version_is_unchanged(self):
        manifest = {"apiVersion": 1, "kind": "Foo"}
        assert _rewrite(SYNTHETIC_GROUP, manifest) == manifest

    def test_other_fields_survive(self):
        manifest = {
            "apiVersion": "v1",
            "kind": "Route",
            "metadata": {"name": "web", "labels": {"app": "web"}, "apiVersion": "nested/v9"},
            "spec": {"host": "example.com", "weight": 1.5, "tls": None, "ports": [80, 443]},
            "note": "unicode ✓",
        }
        result = _rewrite(SYNTHETIC_GROUP, manifest)
        assert result.pop("apiVersion") == "openshift.org/v1"
        manifest.pop("apiVersion")
        # Only the top-level field is rewritten
        assert result == manifest

    def test_round_trip_for_synthetic_group(self):
        original = {"apiVersion": "openshift.org/v1", "kind": "Foo", "metadata": {"name": "x"}}
        outbound = rewrite_group("", json.dumps(original).encode("utf-8"))
        inbound = rewrite_group(SYNTHETIC_GROUP, outbound)
        assert json.loads(inbound) == original

    def test_round_trip_is_lossy_for_other_groups(self):
        # The original group is not remembered: anything sent in comes back
        # tagged with the synthetic group.
        original = {"apiVersion": "apps/v1", "kind": "Deployment"}
        outbound = rewrite_group("", json.dumps(original).encode("utf-8"))
        inbound = json.loads(rewrite_group(SYNTHETIC_GROUP, outbound))
        assert inbound != original
        assert inbound["apiVersion"] == "openshift.org/v1"

    @pytest.mark.parametrize(
        "data",
        [b"", b"{not json", b"[1, 2, 3]", b'"apiVersion"', b"null", b"\xff\xfe"],
    )
    def test_rejects_non_object_documents(self, data):
        with pytest.raises(DecodeError):
            rewrite_group(SYNTHETIC_GROUP, data)

    def test_rejects_malformed_group_version(self):
        with pytest.raises(GroupFormatError):
            rewrite_group("", b'{"apiVersion": "a/b/c"}')

    @pytest.mark.parametrize("constant", [b"NaN", b"Infinity", b"-Infinity"])
    def test_rejects_non_json_number_constants(self, constant):
        with pytest.raises(DecodeError):
            rewrite_group("", b'{"apiVersion":"openshift.org/v1","n":' + constant + b"}")

    def test_rejects_numbers_out_of_double_range(self):
        with pytest.raises(DecodeError):
            rewrite_group("", b'{"apiVersion":"openshift.org/v1","n":1e400}')

    def test_rejects_lone_surrogate_escape(self):
        with pytest.raises(DecodeError):
            rewrite_group("", b'{"apiVersion":"openshift.org/v1","x":"\\ud800"}')

    def test_keeps_surrogate_pairs(self):
        result = json.loads(rewrite_group("", b'{"apiVersion":"openshift.org/v1","x":"\\ud83d\\ude00"}'))
        assert result["x"] == "\U0001F600"
