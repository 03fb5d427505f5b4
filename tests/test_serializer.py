"""Tests for the redacting variable serializer."""

from datetime import datetime, timezone

import pytest

from faultline.serializer import CIRCULAR, FILTERED, MAX_DEPTH, VariableSerializer, truncate_string


@pytest.fixture
def serializer():
    return VariableSerializer()


@pytest.mark.parametrize('value', [None, {}, [], '', (), set(), b''])
def test_empty_input_yields_empty_mapping(serializer, value):
    assert serializer.serialize(value) == {}


def test_sensitive_keys_are_redacted_at_any_depth(serializer):
    result = serializer.serialize({
        'user': {'name': 'ada', 'Password': 'hunter2', 'profile': {'auth_token': ['a', 'b']}},
        'API_KEY': 1234,
        'items': [{'secret_answer': 'blue'}],
    })

    assert result['user']['name'] == 'ada'
    assert result['user']['Password'] == FILTERED
    assert result['user']['profile']['auth_token'] == FILTERED
    assert result['API_KEY'] == FILTERED
    assert result['items'] == [{'secret_answer': FILTERED}]


def test_custom_filter_keys_replace_defaults():
    serializer = VariableSerializer(filter_keys=['pin'])

    result = serializer.serialize({'pin_code': '0000', 'password': 'visible'})

    assert result == {'pin_code': FILTERED, 'password': 'visible'}


def test_self_referencing_mapping_does_not_recurse(serializer):
    data = {'name': 'loop'}
    data['self'] = data

    assert serializer.serialize(data) == {'name': 'loop', 'self': CIRCULAR}


def test_self_referencing_list_does_not_recurse(serializer):
    items = [1]
    items.append(items)

    assert serializer.serialize({'items': items}) == {'items': [1, CIRCULAR]}


def test_shared_reference_is_not_mistaken_for_a_cycle(serializer):
    shared = [1, 2]

    assert serializer.serialize({'a': shared, 'b': shared}) == {'a': [1, 2], 'b': [1, 2]}


def test_long_strings_are_strictly_shortened_and_flagged(serializer):
    value = 'x' * 1000

    result = serializer.serialize({'body': value})['body']

    assert len(result) < len(value)
    assert len(result) <= 500
    assert result.endswith('...[truncated, original length 1000]')


def test_strings_at_the_threshold_are_untouched(serializer):
    value = 'y' * 500

    assert serializer.serialize({'body': value})['body'] == value


def test_truncate_string_always_shortens_even_with_tiny_limits():
    for length in range(6, 80):
        value = 'a' * length
        assert len(truncate_string(value, 5)) < length


def test_nesting_beyond_max_depth_is_replaced():
    serializer = VariableSerializer(max_depth=3)
    nested = {'a': {'a': {'a': {'a': {'a': 1}}}}}

    assert serializer.serialize(nested) == {'a': {'a': {'a': {'a': MAX_DEPTH}}}}


def test_large_collections_are_capped():
    serializer = VariableSerializer(max_collection_size=10)

    result = serializer.serialize({'ids': list(range(500)), 'map': {str(i): i for i in range(50)}})

    assert result['ids'] == list(range(10))
    assert len(result['map']) == 10


def test_objects_fall_back_to_repr(serializer):
    class Order:
        def __repr__(self):
            return '<Order #12>'

    assert serializer.serialize({'order': Order()}) == {'order': '<Order #12>'}


def test_unrepresentable_objects_degrade_to_placeholder(serializer):
    class Broken:
        def __repr__(self):
            raise RuntimeError('no repr for you')

    assert serializer.serialize({'obj': Broken()}) == {'obj': '[UNSERIALIZABLE: Broken]'}


def test_scalars_and_special_values(serializer):
    moment = datetime(2024, 5, 1, 12, 30, tzinfo=timezone.utc)

    result = serializer.serialize({
        'when': moment,
        'ratio': float('nan'),
        'raw': b'caf\xc3\xa9',
        'flag': True,
        'tags': ('a', 'b'),
    })

    assert result == {
        'when': '2024-05-01T12:30:00+00:00',
        'ratio': 'nan',
        'raw': 'café',
        'flag': True,
        'tags': ['a', 'b'],
    }


def test_non_mapping_input_is_wrapped(serializer):
    assert serializer.serialize([1, 'two']) == {'value': [1, 'two']}


def test_mapping_with_exploding_items_never_raises(serializer):
    class ExplodingMapping(dict):
        def items(self):
            raise RuntimeError('boom')

    result = serializer.serialize(ExplodingMapping(a=1))

    assert result == {'error': '[SERIALIZATION FAILED: RuntimeError]'}
