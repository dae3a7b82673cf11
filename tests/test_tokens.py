"""Tests for CAS form token extraction and profile id discovery."""

import pytest

from conftest import LOGIN_PAGE, PORTAL_PAGE
from uom_auth import (
    TokenMissing,
    extract_login_tokens,
    extract_security_token,
    find_profile_id,
)


class TestLoginTokens:

    def test_execution_and_lt(self):
        assert extract_login_tokens(LOGIN_PAGE) == ('e1s1-token', 'LT-42')

    def test_lt_is_optional(self):
        html = '<form><input type="hidden" name="execution" value="X"></form>'
        assert extract_login_tokens(html) == ('X', None)

    def test_missing_execution(self):
        html = '<form><input type="hidden" name="lt" value="Y"></form>'
        with pytest.raises(TokenMissing, match='execution'):
            extract_login_tokens(html)

    def test_execution_without_value_attribute(self):
        with pytest.raises(TokenMissing):
            extract_login_tokens('<input name="execution">')

    @pytest.mark.parametrize('html', ['', '<html><body', '<<<>>>', 'not markup at all'])
    def test_malformed_markup_is_a_typed_error(self, html):
        with pytest.raises(TokenMissing):
            extract_login_tokens(html)

    def test_unclosed_container_tags(self):
        html = '<html><body><form><div><input name="execution" value="abc">'
        assert extract_login_tokens(html) == ('abc', None)


class TestSecurityToken:

    def test_meta_csrf(self):
        assert extract_security_token(PORTAL_PAGE) == 'csrf-123'

    def test_missing_meta(self):
        with pytest.raises(TokenMissing, match='CSRF'):
            extract_security_token('<html><head><meta name="_csrf_header" content="X"></head></html>')

    def test_meta_without_content(self):
        with pytest.raises(TokenMissing):
            extract_security_token('<meta name="_csrf">')


class TestFindProfileId:

    def test_nested_numeric_id(self):
        assert find_profile_id({'data': {'id': 42}}) == '42'

    def test_list_uses_first_element(self):
        assert find_profile_id([{'id': 'abc'}, {'id': 'zzz'}]) == 'abc'

    @pytest.mark.parametrize('value', [{}, [], 'string', 7, None, True])
    def test_nothing_found(self, value):
        assert find_profile_id(value) is None

    def test_nested_hit_wins_over_own_id(self):
        assert find_profile_id({'id': 'outer', 'profile': {'id': 'inner'}}) == 'inner'

    def test_own_id_when_children_have_none(self):
        assert find_profile_id({'id': 5, 'name': 'x', 'tags': []}) == '5'

    def test_members_in_document_order(self):
        assert find_profile_id({'a': {'id': 'first'}, 'b': {'id': 'second'}}) == 'first'

    def test_list_does_not_recurse_into_first_element(self):
        assert find_profile_id([{'profile': {'id': 'deep'}}]) is None

    def test_boolean_id_is_ignored(self):
        assert find_profile_id({'id': True}) is None
