"""
Unit tests for shared data models.
"""

import pytest

from api_insights.shared.models import (
    PaginatedResult, TokenKind, TokenPair, TokenSet, User
)


class TestTokenModels:
    """Test credential models."""

    def test_token_set_from_dict_normalizes_empty_values(self):
        tokens = TokenSet.from_dict({'access': 'A1', 'refresh': '', 'challenge': None})

        assert tokens == TokenSet(access='A1')
        assert tokens.get(TokenKind.ACCESS) == 'A1'
        assert tokens.to_dict() == {'access': 'A1', 'refresh': None, 'challenge': None}

    @pytest.mark.parametrize("payload", [None, ["A1"], "A1"])
    def test_token_set_from_dict_rejects_non_objects(self, payload):
        with pytest.raises(ValueError):
            TokenSet.from_dict(payload)

    def test_token_set_is_immutable(self):
        tokens = TokenSet(access='A1')

        with pytest.raises(AttributeError):
            tokens.access = 'A2'

    def test_token_pair_requires_access(self):
        with pytest.raises(ValueError):
            TokenPair.from_dict({'refresh': 'R1'})

    def test_token_pair_repr_hides_values(self):
        assert 'A1' not in repr(TokenPair('A1', 'R1'))


class TestUser:
    """Test User model."""

    def test_from_dict(self):
        user = User.from_dict({
            'id': 5,
            'email': 'linus@example.com',
            'first_name': None,
            'company_name': 'Acme',
            'is_two_factor_enabled': True,
            'timezone': 'Europe/Helsinki'
        })

        assert user.first_name == ''
        assert user.company_name == 'Acme'
        assert user.is_two_factor_enabled
        assert user.full_name == 'linus@example.com'

    def test_display_name_wins(self):
        user = User(id=1, email='a@b.c', first_name='A', last_name='B', display_name='Boss')

        assert user.full_name == 'Boss'

    @pytest.mark.parametrize("payload", [{}, {'id': 1}, {'email': 'a@b.c'}, None])
    def test_from_dict_requires_identity(self, payload):
        with pytest.raises(ValueError):
            User.from_dict(payload)


class TestPagination:
    """Test the paginated result view."""

    def test_defaults(self):
        page = PaginatedResult.from_dict({'results': None})

        assert page.results == []
        assert page.pagination.current_page == 1
        assert not page.has_next
