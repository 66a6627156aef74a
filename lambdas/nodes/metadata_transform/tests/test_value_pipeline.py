"""
Unit tests for the value pipeline.

Covers replace rules, length normalizers, non-sort stripping and the ordered
apply_pipeline chain.
"""

import pytest


def _rule(field_name="MD_TITLE", **config):
    from nodes.metadata_transform.rules import FieldRule

    return FieldRule.from_dict(field_name, {"xpaths": ["mods:title"], **config})


class TestReplaceRules:
    """Tests for replace rule parsing and application."""

    def test_rules_apply_in_declared_order(self):
        """Test that a later rule sees the output of an earlier one."""
        from nodes.metadata_transform.value_pipeline import (
            CharRule,
            LiteralRule,
            apply_replace_rules,
        )

        rules = [LiteralRule(text="ab", replacement="x"), CharRule(char="x", replacement="y")]
        assert apply_replace_rules("abc", rules) == "yc"

    def test_regex_rule(self):
        """Test regex replacement uses re.sub semantics."""
        from nodes.metadata_transform.value_pipeline import RegexRule, apply_replace_rules

        assert apply_replace_rules("a1b22", [RegexRule(pattern=r"\d+", replacement="#")]) == "a#b#"

    def test_space_placeholder(self):
        """Test that #SPACE# stands for a space in key and replacement."""
        from nodes.metadata_transform.value_pipeline import CharRule, replace_rule_from_dict

        rule = replace_rule_from_dict({"char": "#SPACE#", "replace_with": "_"})
        assert rule == CharRule(char=" ", replacement="_")

        rule = replace_rule_from_dict({"string": "-", "replace_with": "#SPACE#"})
        assert rule.apply("a-b") == "a b"

    def test_missing_rule_key_raises(self):
        """Test that an entry without char/string/regex is rejected."""
        from nodes.metadata_transform.value_pipeline import replace_rule_from_dict

        with pytest.raises(ValueError):
            replace_rule_from_dict({"replace_with": "x"})

    def test_invalid_regex_raises(self):
        """Test that an uncompilable regex is rejected at load time."""
        from nodes.metadata_transform.value_pipeline import replace_rule_from_dict

        with pytest.raises(ValueError, match="Invalid replace rule regex"):
            replace_rule_from_dict({"regex": "(unclosed"})

    def test_none_value_raises(self):
        """Test the contract that values may not be None."""
        from nodes.metadata_transform.value_pipeline import apply_replace_rules

        with pytest.raises(ValueError):
            apply_replace_rules(None, [])


class TestValueNormalizer:
    """Tests for fixed-length value normalization."""

    def test_pads_front_by_default(self):
        from nodes.metadata_transform.value_pipeline import ValueNormalizer

        assert ValueNormalizer(length=8).normalize("1") == "00000001"

    def test_pads_rear(self):
        from nodes.metadata_transform.value_pipeline import NormalizerPosition, ValueNormalizer

        normalizer = ValueNormalizer(length=5, filler="x", position=NormalizerPosition.REAR)
        assert normalizer.normalize("abc") == "abcxx"

    def test_truncates_front(self):
        """Test that FRONT truncation keeps the end of the value."""
        from nodes.metadata_transform.value_pipeline import ValueNormalizer

        assert ValueNormalizer(length=8).normalize("123456789") == "23456789"

    def test_truncates_rear(self):
        from nodes.metadata_transform.value_pipeline import NormalizerPosition, ValueNormalizer

        normalizer = ValueNormalizer(length=3, position=NormalizerPosition.REAR)
        assert normalizer.normalize("123456") == "123"

    def test_relevant_part_capture_groups(self):
        """Test that every capture group is normalized in place."""
        from nodes.metadata_transform.value_pipeline import ValueNormalizer

        normalizer = ValueNormalizer(length=8, relevant_part_regex=r"foo (\d+) bar (\d+)")
        assert normalizer.normalize("foo 1 bar 2") == "foo 00000001 bar 00000002"

    def test_relevant_part_whole_match(self):
        """Test that the whole match is used when the regex has no groups."""
        from nodes.metadata_transform.value_pipeline import ValueNormalizer

        normalizer = ValueNormalizer(length=4, relevant_part_regex=r"\d+")
        assert normalizer.normalize("vol. 12 (1999)") == "vol. 0012 (1999)"

    def test_relevant_part_no_match(self):
        from nodes.metadata_transform.value_pipeline import ValueNormalizer

        normalizer = ValueNormalizer(length=4, relevant_part_regex=r"\d+")
        assert normalizer.normalize("no digits") == "no digits"

    def test_roman_numerals_converted(self):
        """Test that roman numerals are converted instead of padded."""
        from nodes.metadata_transform.value_pipeline import ValueNormalizer

        normalizer = ValueNormalizer(length=8, relevant_part_regex=r"Band (\w+)", convert_roman=True)
        assert normalizer.normalize("Band XIV") == "Band 14"

    def test_convert_roman_numeral(self):
        from nodes.metadata_transform.value_pipeline import convert_roman_numeral

        assert convert_roman_numeral("MCMXCIX") == 1999
        assert convert_roman_numeral("iv") == 4
        with pytest.raises(ValueError):
            convert_roman_numeral("ABC")

    def test_from_dict(self):
        from nodes.metadata_transform.value_pipeline import NormalizerPosition, ValueNormalizer

        normalizer = ValueNormalizer.from_dict({"length": "6", "filler": "_", "position": "rear"})
        assert normalizer.length == 6
        assert normalizer.filler == "_"
        assert normalizer.position == NormalizerPosition.REAR

    def test_from_dict_rejects_bad_length(self):
        from nodes.metadata_transform.value_pipeline import ValueNormalizer

        with pytest.raises(ValueError):
            ValueNormalizer.from_dict({"length": 0})
        with pytest.raises(ValueError):
            ValueNormalizer.from_dict({"length": "eight"})


class TestValueHelpers:
    """Tests for the small value helpers."""

    def test_non_sort_configuration(self):
        from nodes.metadata_transform.value_pipeline import NonSortConfiguration

        config = NonSortConfiguration(prefix="<<", suffix=">>")
        assert config.apply("<<Der>> Titel") == "Titel"

    def test_to_one_token(self):
        from nodes.metadata_transform.value_pipeline import to_one_token

        assert to_one_token("a b-c") == "abc"

    def test_to_one_token_keeps_hierarchy(self):
        """Test that the splitting character becomes a period."""
        from nodes.metadata_transform.value_pipeline import to_one_token

        assert to_one_token("Main Topic#Sub Topic", "#") == "MainTopic.SubTopic"

    def test_identifier_modifications(self):
        from nodes.metadata_transform.value_pipeline import apply_identifier_modifications

        assert apply_identifier_modifications(" PPN 123:45 ") == "PPN_123_45"
        assert apply_identifier_modifications("PPN(12),3") == "PPN_12__3"

    def test_clean_up_name(self):
        """Test removal of concatenation leftovers around names."""
        from nodes.metadata_transform.value_pipeline import clean_up_name

        assert clean_up_name('"(abcd,"') == "abcd"
        assert clean_up_name(", Goethe") == "Goethe"
        assert clean_up_name("Müller, ") == "Müller"
        assert clean_up_name(None) is None


class TestApplyPipeline:
    """Tests for the ordered value pipeline."""

    def test_empty_value_unchanged(self):
        from nodes.metadata_transform.value_pipeline import apply_pipeline

        assert apply_pipeline("", _rule()) == ""

    def test_html_entities_unescaped(self):
        from nodes.metadata_transform.value_pipeline import apply_pipeline

        assert apply_pipeline("A &amp; B", _rule()) == "A & B"

    def test_date_field_normalized(self):
        """Test that DATE_ fields become ISO instants."""
        from nodes.metadata_transform.value_pipeline import apply_pipeline

        assert apply_pipeline("05.08.2014", _rule("DATE_CREATED")) == "2014-08-05T00:00:00Z"

    def test_pi_cleaned(self):
        from nodes.metadata_transform.value_pipeline import apply_pipeline

        assert apply_pipeline("PPN 123", _rule("PI")) == "PPN_123"

    def test_replace_rules_run_before_lowercase(self):
        """Test the order: replace rules, then lowercase, then normalizers."""
        from nodes.metadata_transform.value_pipeline import apply_pipeline

        rule = _rule(
            replace_rules=[{"string": "Vol.", "replace_with": "V"}],
            lowercase=True,
            value_normalizers=[{"length": 4, "relevant_part_regex": r"v(\d+)"}],
        )
        assert apply_pipeline("Vol.7", rule) == "v0007"

    def test_non_sort_runs_last(self):
        from nodes.metadata_transform.value_pipeline import apply_pipeline

        rule = _rule(non_sort_configurations=[{"prefix": "<<", "suffix": ">>"}])
        assert apply_pipeline("<<Die>> Räuber", rule) == "Räuber"
