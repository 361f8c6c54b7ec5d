"""Tests for certwarden.deploy.substitute -- placeholder tokens."""

from __future__ import annotations

from certwarden.deploy.substitute import substitute

TOKENS = {
    "name": "web",
    "cert_path": "/certs/web.crt",
    "key_path": "/certs/web.key",
    "domains": "a.example,b.example",
}


class TestSubstitute:
    def test_replaces_known_tokens(self):
        assert substitute("cp {cert_path} /out/{name}.crt", TOKENS) == (
            "cp /certs/web.crt /out/web.crt"
        )

    def test_unknown_braces_survive(self):
        body = '{"cert": "{cert_path}", "other": "{not_a_token}"}'
        assert substitute(body, TOKENS) == '{"cert": "/certs/web.crt", "other": "{not_a_token}"}'

    def test_known_token_without_value_becomes_empty(self):
        assert substitute("[{chain_path}]", TOKENS) == "[]"

    def test_nested_structures(self):
        value = {"headers": {"X-Cert": "{name}"}, "args": ["{key_path}", 3], "{name}": "k"}
        out = substitute(value, TOKENS)
        assert out["headers"]["X-Cert"] == "web"
        assert out["args"] == ["/certs/web.key", 3]
        # keys are never substituted
        assert "{name}" in out

    def test_non_strings_untouched(self):
        assert substitute(30, TOKENS) == 30
        assert substitute(None, TOKENS) is None
        assert substitute(True, TOKENS) is True

    def test_no_recursive_expansion(self):
        assert substitute("{name}", {"name": "{cert_path}"}) == "{cert_path}"
