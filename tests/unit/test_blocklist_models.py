"""Tests for the blocklist document model and index builder."""

import pytest

from posthog_tunnel.blocklist.models import (
    BlockedIdentifierEntry,
    BlocklistData,
    build_index,
)
from posthog_tunnel.errors import BlocklistLoadError


class TestBlocklistDataFromDict:

    def test_current_format(self):
        data = BlocklistData.from_dict({
            'entries': [{'identifier': 'A', 'label': 'a', 'blockedDomains': ['x.com']}],
            'globalBlockedDomains': ['spam.com'],
        })
        assert data.entries == [BlockedIdentifierEntry('A', 'a', ['x.com'])]
        assert data.global_blocked_domains == ['spam.com']

    def test_legacy_key_names(self):
        data = BlocklistData.from_dict({
            'apiKeys': [{'apiKey': 'phc_old', 'label': 'old'}],
        })
        assert data.entries[0].identifier == 'phc_old'
        assert data.entries[0].blocked_domains == []
        assert data.global_blocked_domains == []

    def test_duplicates_collapsed(self):
        data = BlocklistData.from_dict({
            'entries': [
                {'identifier': 'A', 'label': 'first', 'blockedDomains': ['x.com', 'x.com']},
                {'identifier': 'A', 'label': 'second'},
            ],
            'globalBlockedDomains': ['spam.com', 'spam.com', 'ads.net'],
        })
        assert len(data.entries) == 1
        assert data.entries[0].label == 'first'
        assert data.entries[0].blocked_domains == ['x.com']
        assert data.global_blocked_domains == ['spam.com', 'ads.net']

    def test_empty_object(self):
        data = BlocklistData.from_dict({})
        assert data.entries == []
        assert data.global_blocked_domains == []

    @pytest.mark.parametrize('raw', [
        [],
        'nope',
        {'entries': 'A'},
        {'entries': [42]},
        {'entries': [{'label': 'no identifier'}]},
        {'entries': [{'identifier': 'A', 'blockedDomains': 'x.com'}]},
        {'globalBlockedDomains': {'spam.com': True}},
    ])
    def test_malformed_documents_rejected(self, raw):
        with pytest.raises(BlocklistLoadError):
            BlocklistData.from_dict(raw)


class TestSerialization:

    def test_to_dict_uses_camel_case(self):
        data = BlocklistData(
            entries=[BlockedIdentifierEntry('A', 'a', ['x.com'])],
            global_blocked_domains=['spam.com'],
        )
        assert data.to_dict() == {
            'entries': [{'identifier': 'A', 'label': 'a', 'blockedDomains': ['x.com']}],
            'globalBlockedDomains': ['spam.com'],
        }

    def test_to_dict_copies_lists(self):
        entry = BlockedIdentifierEntry('A', 'a', ['x.com'])
        entry.to_dict()['blockedDomains'].append('y.com')
        assert entry.blocked_domains == ['x.com']


class TestEntry:

    def test_add_domain_is_idempotent(self):
        entry = BlockedIdentifierEntry('A', 'a')
        assert entry.add_domain('x.com') is True
        assert entry.add_domain('x.com') is False
        assert entry.blocked_domains == ['x.com']


class TestBuildIndex:

    def test_index_reflects_document(self):
        entry = BlockedIdentifierEntry('A', 'a', ['x.com', 'y.com'])
        data = BlocklistData(entries=[entry], global_blocked_domains=['spam.com'])
        index = build_index(data)

        assert index.identifier_map['A'] is entry
        assert index.global_domain_set == frozenset({'spam.com'})
        assert index.per_identifier_domain_sets['A'] == frozenset({'x.com', 'y.com'})

    def test_index_is_read_only(self):
        index = build_index(BlocklistData())
        with pytest.raises(TypeError):
            index.identifier_map['A'] = BlockedIdentifierEntry('A', 'a')

    def test_index_unaffected_by_later_document_changes(self):
        data = BlocklistData(global_blocked_domains=['spam.com'])
        index = build_index(data)
        data.global_blocked_domains.append('ads.net')
        assert 'ads.net' not in index.global_domain_set
