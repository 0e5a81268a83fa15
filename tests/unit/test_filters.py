"""
Unit tests for the post-validation filter pipeline.
"""

import pytest

from formhandler.filters import FilterPipeline, minimize, parse_tag_list, strip_tags, to_numeric
from formhandler.registry import create_validator_registry
from formhandler.resolver import RuleResolver


@pytest.fixture
def apply():
    resolver = RuleResolver(create_validator_registry().keys())
    pipeline = FilterPipeline()

    def run(value, rule_type='text', filters=None, field='field'):
        rule = resolver.resolve(field, {'type': rule_type, 'filters': filters or {}})
        return pipeline.apply(rule, value)

    return run


class TestFilterHelpers:

    @pytest.mark.parametrize('value,expected', [
        ('200AD', 200),
        ('AD30', 0),
        ('1.50kg', 1.5),
        ('-3', -3),
        ('', 0),
        (True, 1),
        (4.5, 4.5),
    ])
    def test_to_numeric(self, value, expected):
        assert to_numeric(value) == expected

    def test_parse_tag_list(self):
        assert parse_tag_list('p,<br>') == ['p', 'br']
        assert parse_tag_list(['<STRONG>', 'em']) == ['strong', 'em']
        assert parse_tag_list(None) == []

    def test_strip_tags(self):
        assert strip_tags('<b>bold</b> text') == 'bold text'
        assert strip_tags('plain & simple') == 'plain & simple'

    def test_strip_tags_keeps_entities_and_stray_brackets_as_written(self):
        assert strip_tags('Tom & Jerry <b>rock</b>') == 'Tom & Jerry rock'
        assert strip_tags('1 < 2 <i>always</i>') == '1 < 2 always'

    def test_minimize(self):
        assert minimize('  many \n\n  spaces\there ') == 'many spaces here'


class TestFilterPipeline:

    def test_defaults_decode_strip_and_trim(self, apply):
        assert apply('  Hello%20<i>World</i>  ') == 'Hello World'

    def test_default_filters_can_be_disabled(self, apply):
        assert apply(' a%20b ', filters={'decode': False, 'trim': False}) == ' a%20b '
        assert apply('<i>x</i>', filters={'stripTags': False}) == '<i>x</i>'

    def test_strip_tags_ignore_list(self, apply):
        value = '<p>Name<br></p><b>x</b>'
        assert apply(value, filters={'stripTagsIgnore': 'p,<br>'}) == '<p>Name<br></p>x'

    def test_minimize_filter(self, apply):
        assert apply('line one\n\nline   two', filters={'minimize': True}) == 'line one line two'

    def test_integer_and_float_types_are_cast(self, apply):
        assert apply('42', 'int') == 42
        assert apply('1500.50', 'money') == 1500.5
        assert isinstance(apply('3', 'number'), float)

    def test_to_numeric_filter_on_text(self, apply):
        assert apply('200AD', filters={'toNumeric': True}) == 200

    @pytest.mark.parametrize('value,expected', [
        ('on', True),
        ('1', True),
        ('off', False),
        ('false', False),
        ('', False),
    ])
    def test_checkbox_values_become_booleans(self, apply, value, expected):
        assert apply(value, 'checkbox') is expected

    def test_case_filters(self, apply):
        assert apply('jack', filters={'uppercase': True}) == 'JACK'
        assert apply('JACK', filters={'lowercase': True}) == 'jack'
        assert apply('jACK', filters={'capitalize': True}) == 'Jack'

    def test_title_type_is_titleized_by_default(self, apply):
        assert apply('react js developer', 'title') == 'React Js Developer'
        assert apply('react js', 'title', {'titleize': False}) == 'react js'

    def test_inflection_filters(self, apply):
        assert apply('category', filters={'pluralize': True}) == 'categories'
        assert apply('wives', filters={'singularize': True}) == 'wife'

    def test_ordinalize_after_numeric_cast(self, apply):
        assert apply('2', 'pInt', {'ordinalize': True}) == '2nd'

    def test_callback_runs_last(self, apply):
        assert apply(' jack ', filters={'capitalize': True, 'callback': lambda v: v + '!'}) == 'Jack!'

    def test_list_values_are_filtered_element_wise(self, apply):
        assert apply([' 1 ', '2x'], 'int', field='scores') == [1, 2]

    def test_text_keeps_ampersands_after_tags_are_stripped(self, apply):
        assert apply('Tom & Jerry <b>rock</b>') == 'Tom & Jerry rock'

    def test_passwords_are_not_decoded_or_stripped_by_default(self, apply):
        assert apply('ab<cd>12&x%21', 'password') == 'ab<cd>12&x%21'

    def test_passwords_can_opt_into_markup_filters(self, apply):
        assert apply('a%21<b>c</b>', 'password', {'decode': True, 'stripTags': True}) == 'a!c'
