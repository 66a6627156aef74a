"""
Unit tests for grouped metadata records.
"""

from unittest.mock import Mock

from lxml import etree

AUTHOR_CONFIG = {
    "xpaths": ["mods:name[@type='personal']/mods:displayForm"],
    "add_to_default": True,
    "group_entity": {
        "type": "PERSON",
        "add_authority_data_to_docstruct": True,
        "add_coords_to_docstruct": True,
        "subfields": {
            "MD_VALUE": "mods:displayForm",
            "MD_FIRSTNAME": "mods:namePart[@type='given']",
            "MD_LASTNAME": "mods:namePart[@type='family']",
            "MD_ROLE": "mods:role/mods:roleTerm",
            "NORM_URI": {"xpaths": ["@valueURI"], "multivalued": False},
        },
    },
}

EVENT_DOCUMENT = b"""<event>
  <name>Ausgrabung</name>
  <actor><name>Schliemann</name></actor>
  <actor><name>Doerpfeld</name></actor>
</event>"""

EVENT_CONFIG = {
    "xpaths": ["event"],
    "group_entity": {
        "type": "EVENT",
        "subfields": {"MD_VALUE": "name"},
        "children": [
            {"name": "MD_EVENT_ACTOR", "type": "PERSON", "xpath": "actor", "subfields": {"MD_VALUE": "name"}}
        ],
    },
}


def _rule(field_name, config):
    from nodes.metadata_transform.rules import FieldRule

    return FieldRule.from_dict(field_name, config)


def _names(mets_root):
    from nodes.metadata_transform.xpath_scope import XPathEvaluator

    return XPathEvaluator().evaluate_elements("//mods:name[@type='personal']", mets_root)


def _build(element, field_name, config, resolver=None, citation_fetcher=None, max_depth=8, restricted=False):
    from nodes.metadata_transform.aggregates import RecordAccumulator
    from nodes.metadata_transform.grouping import GroupBuilder
    from nodes.metadata_transform.xpath_scope import XPathEvaluator

    rule = _rule(field_name, config)
    accumulator = RecordAccumulator()
    builder = GroupBuilder(
        XPathEvaluator(), resolver=resolver, citation_fetcher=citation_fetcher, max_depth=max_depth
    )
    arena = builder.build(element, rule.group_entity, rule, field_name, accumulator, restricted=restricted)
    return arena, accumulator


class TestGroupBuilder:
    """Tests for building grouped records."""

    def test_person_record(self, mets_root):
        from nodes.metadata_transform.rules import GroupType

        arena, accumulator = _build(_names(mets_root)[0], "MD_AUTHOR", AUTHOR_CONFIG)
        record = arena[0]

        assert len(arena) == 1
        assert record.label == "MD_AUTHOR"
        assert record.group_type == GroupType.PERSON
        assert record.main_value == "Goethe, Johann Wolfgang von"
        assert record.values("LABEL") == ["MD_AUTHOR"]
        assert record.values("METADATATYPE") == ["PERSON"]
        assert record.values("MD_ROLE") == ["aut"]
        assert record.values("GROUPFIELD") == ["MD_AUTHOR_Goethe, Johann Wolfgang von"]
        assert record.values("SORT_VALUE") == ["Goethe, Johann Wolfgang von"]
        assert record.values("DEFAULT") == ["Goethe, Johann Wolfgang von"]
        assert "aut" in accumulator.default
        assert "PERSON" not in accumulator.default

    def test_person_name_from_parts(self, mets_root):
        """Test the 'last, first' fallback when no display form exists."""
        arena, _ = _build(_names(mets_root)[1], "MD_AUTHOR", AUTHOR_CONFIG)

        assert arena[0].main_value == "Schiller, Friedrich"
        assert arena[0].values("MD_VALUE") == ["Schiller, Friedrich"]

    def test_restricted_record(self, mets_root):
        arena, _ = _build(_names(mets_root)[0], "MD_AUTHOR", AUTHOR_CONFIG, restricted=True)

        assert arena[0].values("ACCESSCONDITION") == ["METADATA_ACCESS_RESTRICTED"]

    def test_authority_data(self, mets_root):
        from nodes.metadata_transform.authority import AuthorityResolver
        from nodes.metadata_transform.grouping import promote_to_docstruct
        from nodes.metadata_transform.models import OutputField

        resolver = Mock(spec=AuthorityResolver)
        resolver.resolve.return_value = [
            OutputField("NORM_NAME", "Goethe, Johann Wolfgang von"),
            OutputField("NORM_IDENTIFIER", "118540238"),
            OutputField("WKT_COORDS", "8.0 50.0"),
            OutputField("BOOL_WKT_COORDS", "true"),
        ]

        arena, accumulator = _build(_names(mets_root)[0], "MD_AUTHOR", AUTHOR_CONFIG, resolver=resolver)
        record = arena[0]

        assert resolver.resolve.call_args[0][0] == "118540238"
        assert resolver.resolve.call_args[1]["label_field"] == "MD_AUTHOR"
        assert record.authority_uri == "118540238"
        assert record.values("NORM_URI") == ["https://d-nb.info/gnd/118540238"]
        assert record.values("GROUPFIELD") == ["MD_AUTHOR_118540238"]
        assert accumulator.values("MD_AUTHOR_UNTOKENIZED") == ["Goethe, Johann Wolfgang von"]

        promote_to_docstruct(record, accumulator)
        assert accumulator.values("NORM_IDENTIFIER") == ["118540238"]
        assert accumulator.values("WKT_COORDS") == ["8.0 50.0"]
        assert not accumulator.has_field("BOOL_WKT_COORDS")

    def test_identifier_from_element_attributes(self):
        """Test that the element's valueURI is used when no subfield names one."""
        from nodes.metadata_transform.authority import AuthorityResolver

        element = etree.fromstring(
            b'<subject authority="gnd" authorityURI="https://d-nb.info/gnd/" valueURI="4020517-4">'
            b"<topic>Geschichte</topic></subject>"
        )
        resolver = Mock(spec=AuthorityResolver)
        resolver.resolve.return_value = []

        arena, _ = _build(
            element,
            "MD_SUBJECT",
            {"xpaths": ["subject"], "group_entity": {"type": "SUBJECT", "subfields": {"MD_VALUE": "topic"}}},
            resolver=resolver,
        )

        assert arena[0].values("NORM_URI") == ["https://d-nb.info/gnd/4020517-4"]
        assert resolver.resolve.call_args[0][0] == "https://d-nb.info/gnd/4020517-4"

    def test_placeholder_authority_uri_ignored(self):
        """Test that an empty vocabulary base URI is not treated as an identifier."""
        from nodes.metadata_transform.authority import AuthorityResolver

        element = etree.fromstring(
            b'<name authorityURI="https://d-nb.info/gnd/"><displayForm>Anonymus</displayForm></name>'
        )
        resolver = Mock(spec=AuthorityResolver)
        config = {
            "xpaths": ["name"],
            "group_entity": {
                "type": "PERSON",
                "subfields": {"MD_VALUE": "displayForm", "NORM_URI": "@authorityURI"},
            },
        }

        arena, _ = _build(element, "MD_AUTHOR", config, resolver=resolver)

        resolver.resolve.assert_not_called()
        assert arena[0].authority_uri is None
        assert [f.name for f in arena[0].fields if f.name.startswith("NORM_")] == []
        assert arena[0].values("GROUPFIELD") == ["MD_AUTHOR_Anonymus"]

    def test_restricted_record_without_main_value(self):
        element = etree.fromstring(b"<subject><genre>Karte</genre></subject>")
        config = {"xpaths": ["subject"], "group_entity": {"type": "SUBJECT", "subfields": {"MD_VALUE": "topic"}}}

        arena, _ = _build(element, "MD_SUBJECT", config, restricted=True)

        assert arena[0].main_value is None
        assert arena[0].values("ACCESSCONDITION") == []

    def test_nested_children(self):
        element = etree.fromstring(EVENT_DOCUMENT)

        arena, _ = _build(element, "MD_EVENT", EVENT_CONFIG)

        assert len(arena) == 3
        assert arena[0].parent_index is None
        assert [r.main_value for r in arena.children(0)] == ["Schliemann", "Doerpfeld"]
        assert arena[1].label == "MD_EVENT_ACTOR"
        assert arena[1].depth == 1

        rendered = arena.to_dicts()
        assert len(rendered) == 1
        assert [child["main_value"] for child in rendered[0]["children"]] == ["Schliemann", "Doerpfeld"]

    def test_depth_limit(self):
        element = etree.fromstring(EVENT_DOCUMENT)

        arena, _ = _build(element, "MD_EVENT", EVENT_CONFIG, max_depth=0)

        assert len(arena) == 1

    def test_citation(self):
        from nodes.metadata_transform.citation import CitationFetcher

        element = etree.fromstring(b'<ref id="42"><title>Local title</title></ref>')
        fetcher = Mock(spec=CitationFetcher)
        fetcher.fetch.return_value = etree.fromstring(b"<rec><title>Cited work</title></rec>")
        config = {
            "xpaths": ["ref"],
            "group_entity": {
                "type": "CITATION",
                "url": "https://cite.example.org/{MD_ID}",
                "subfields": {"MD_ID": "@id", "MD_VALUE": "title"},
            },
        }

        arena, _ = _build(element, "MD_CITATION", config, citation_fetcher=fetcher)

        url, collected = fetcher.fetch.call_args[0]
        assert url == "https://cite.example.org/{MD_ID}"
        assert collected["MD_ID"] == ["42"]
        assert arena[0].values("MD_VALUE") == ["Local title", "Cited work"]


class TestGroupArena:
    """Tests for the flat record arena."""

    def test_merge_reindexes(self):
        element = etree.fromstring(EVENT_DOCUMENT)
        first, _ = _build(element, "MD_EVENT", EVENT_CONFIG)
        second, _ = _build(element, "MD_EVENT", EVENT_CONFIG)

        first.merge(second)

        assert len(first) == 6
        assert first[3].index == 3
        assert first[3].parent_index is None
        assert first[4].parent_index == 3

    def test_contains_equal(self, mets_root):
        from nodes.metadata_transform.grouping import GroupArena

        names = _names(mets_root)
        goethe, _ = _build(names[0], "MD_AUTHOR", AUTHOR_CONFIG)
        goethe_again, _ = _build(names[0], "MD_AUTHOR", AUTHOR_CONFIG)
        schiller, _ = _build(names[1], "MD_AUTHOR", AUTHOR_CONFIG)

        arena = GroupArena()
        arena.merge(goethe)

        assert arena.contains_equal(goethe_again[0]) is True
        assert arena.contains_equal(schiller[0]) is False

    def test_promotion_respects_flags(self):
        from nodes.metadata_transform.aggregates import RecordAccumulator
        from nodes.metadata_transform.grouping import GroupedRecord, promote_to_docstruct
        from nodes.metadata_transform.models import OutputField
        from nodes.metadata_transform.rules import GroupType

        record = GroupedRecord(
            index=0,
            parent_index=None,
            depth=0,
            label="MD_PLACE",
            group_type=GroupType.LOCATION,
            fields=(),
            authority_fields=(
                OutputField("NORM_NAME", "Berlin"),
                OutputField("WKT_COORDS", "13.4 52.5"),
                OutputField("NORM_COORDS_GEOJSON", "{}"),
            ),
            add_coords_to_docstruct=True,
        )
        accumulator = RecordAccumulator()

        promote_to_docstruct(record, accumulator)

        assert [f.name for f in accumulator] == ["WKT_COORDS", "NORM_COORDS_GEOJSON"]
