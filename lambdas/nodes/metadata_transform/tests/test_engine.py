"""
Unit tests for the metadata transformation engine.

Rules are applied to the volume (LOG_0001) and article (LOG_0002) of the
sample METS document.
"""

from unittest.mock import Mock

METS_PREFIX = "mets:xmlData/mods:mods/"

AUTHOR_RULE = {
    "xpaths": ["mods:name[@type='personal']/mods:displayForm"],
    "add_to_default": True,
    "group_entity": {
        "type": "PERSON",
        "add_coords_to_docstruct": True,
        "subfields": {
            "MD_VALUE": "mods:displayForm",
            "MD_FIRSTNAME": "mods:namePart[@type='given']",
            "MD_LASTNAME": "mods:namePart[@type='family']",
            "NORM_URI": {"xpaths": ["@valueURI"], "multivalued": False},
        },
    },
}

VOLUME_RULES = {
    "fields": {
        "DOCTYPE": [{"constant_value": "DOCSTRCT"}],
        "MD_TITLE": [
            {"xpaths": ["mods:titleInfo/mods:title"], "add_sort_field": True, "add_to_default": True}
        ],
        "MD_TITLE_FULL": [
            {
                "xpaths": [
                    "concat({{{ROOT}}}mods:titleInfo/mods:nonSort, ' ', {{{ROOT}}}mods:titleInfo/mods:title)"
                ],
                "add_untokenized_version": False,
            }
        ],
        "MD_YEARPUBLISH": [
            {
                "xpaths": ["mods:originInfo/mods:dateIssued"],
                "normalize_year": True,
                "normalize_year_min_digits": 4,
                "interpolate_years": True,
            }
        ],
        "MD_AUTHOR": [AUTHOR_RULE],
        "MD_COORDINATES": [
            {
                "xpaths": ["mods:subject/mods:cartographics/mods:coordinates"],
                "geojson_source": "sexagesimal:polygon",
                "geojson_add_search_field": True,
            }
        ],
        "PI": [{"xpaths": ["mods:recordInfo/mods:recordIdentifier"], "add_untokenized_version": False}],
        "MD_NOTE": [{"xpaths": ["mods:note"]}],
        "CURRENTNOSORT": [{"xpaths": ["mods:part/mods:detail/mods:number"]}],
    }
}


def _transform(mets_root, rules, log_id="LOG_0001", **kwargs):
    from nodes.metadata_transform.engine import MetadataTransformer
    from nodes.metadata_transform.rules import RuleSet
    from nodes.metadata_transform.xpath_scope import (
        ElementContext,
        MetsMetadataSource,
        build_mets_structure,
    )

    node = build_mets_structure(mets_root).find(log_id)
    source = MetsMetadataSource(mets_root)
    element = source.metadata_block(node.dmd_id)

    transformer = MetadataTransformer(RuleSet.from_dict(rules), **kwargs)
    return transformer.transform(
        element, context=ElementContext(node=node, source=source), query_prefix=METS_PREFIX
    )


class TestMetadataTransformer:
    """Tests for MetadataTransformer.transform."""

    def test_constant(self, mets_root):
        result = _transform(mets_root, VOLUME_RULES)

        assert result.values("DOCTYPE") == ["DOCSTRCT"]
        assert result.values("DOCTYPE_UNTOKENIZED") == []

    def test_title_with_sort_and_default(self, mets_root):
        result = _transform(mets_root, VOLUME_RULES)

        assert result.values("MD_TITLE") == ["Band 7"]
        assert result.values("SORT_TITLE") == ["Band 7"]
        assert result.values("MD_TITLE_UNTOKENIZED") == ["Band 7"]
        assert " Band 7 " in result.default_value

    def test_root_placeholder_expression(self, mets_root):
        result = _transform(mets_root, VOLUME_RULES)

        assert result.values("MD_TITLE_FULL") == ["Der Band 7"]
        assert result.values("MD_TITLE_FULL_UNTOKENIZED") == []

    def test_year_range(self, mets_root):
        """Test year derivation, sort fields and interpolation."""
        result = _transform(mets_root, VOLUME_RULES)

        assert result.values("MD_YEARPUBLISH") == ["1870-1880"]
        assert sorted(int(v) for v in result.values("YEAR")) == list(range(1870, 1881))
        assert result.values("CENTURY") == ["19"]
        assert result.values("SORTNUM_YEAR") == ["1870"]

    def test_grouped_authors(self, mets_root):
        result = _transform(mets_root, VOLUME_RULES)

        assert result.values("MD_AUTHOR") == ["Goethe, Johann Wolfgang von", "Schiller, Friedrich"]
        assert result.values("MD_AUTHOR_UNTOKENIZED") == [
            "Goethe, Johann Wolfgang von",
            "Schiller, Friedrich",
        ]
        assert [record.main_value for record in result.groups.roots()] == [
            "Goethe, Johann Wolfgang von",
            "Schiller, Friedrich",
        ]
        assert " Schiller, Friedrich " in result.default_value

    def test_coordinates(self, mets_root):
        result = _transform(mets_root, VOLUME_RULES)

        assert '"Polygon"' in result.values("MD_COORDINATES")[0]
        assert result.values("WKT_COORDS") == [
            "POLYGON((8.0 50.0, 9.0 50.0, 9.0 51.0, 8.0 51.0, 8.0 50.0))"
        ]
        assert result.values("BOOL_WKT_COORDS") == ["true"]

    def test_identifier_and_integer_fields(self, mets_root):
        result = _transform(mets_root, VOLUME_RULES)

        assert result.values("PI") == ["PPN_123_45"]
        assert result.values("CURRENTNOSORT") == ["12"]

    def test_non_shareable_value_skipped(self, mets_root):
        result = _transform(mets_root, VOLUME_RULES)

        assert result.values("MD_NOTE") == ["public note"]

    def test_non_shareable_group_restricted(self, mets_root):
        rules = {
            "fields": {
                "MD_NOTE": [
                    {
                        "xpaths": ["mods:note"],
                        "add_to_default": True,
                        "group_entity": {"type": "OTHER", "subfields": {"MD_VALUE": "."}},
                    }
                ]
            }
        }

        result = _transform(mets_root, rules)

        assert result.values("MD_NOTE") == ["METADATA_ACCESS_RESTRICTED", "public note"]
        assert result.values("MD_NOTE_UNTOKENIZED") == ["public note"]
        assert "METADATA_ACCESS_RESTRICTED" not in result.default_value
        assert result.groups[0].values("ACCESSCONDITION") == ["METADATA_ACCESS_RESTRICTED"]
        assert result.groups[1].values("ACCESSCONDITION") == []

    def test_first_value_only(self, mets_root):
        rules = {
            "fields": {
                "MD_FAMILYNAME": [{"xpaths": ["mods:name/mods:namePart[@type='family']"], "node": "first"}]
            }
        }

        assert _transform(mets_root, rules).values("MD_FAMILYNAME") == ["Goethe"]

    def test_one_field(self, mets_root):
        rules = {
            "fields": {
                "MD_NAMEPARTS": [
                    {"xpaths": ["mods:name/mods:namePart"], "one_field": True, "one_field_separator": "; "}
                ]
            }
        }

        assert _transform(mets_root, rules).values("MD_NAMEPARTS") == [
            "Goethe; Johann Wolfgang von; Schiller; Friedrich"
        ]

    def test_prefix_and_suffix(self, mets_root):
        rules = {
            "fields": {
                "MD_LABEL": [{"xpaths": [{"xpath": "mods:titleInfo/mods:title", "prefix": "[", "suffix": "]"}]}]
            }
        }

        assert _transform(mets_root, rules).values("MD_LABEL") == ["[Band 7]"]

    def test_parent_scope(self, mets_root):
        rules = {"fields": {"MD_TITLE": [{"xpaths": ["mods:titleInfo/mods:title"], "parents": "all"}]}}

        result = _transform(mets_root, rules, log_id="LOG_0002")

        assert result.values("MD_TITLE") == ["Ein Aufsatz", "Band 7"]
        assert result.values("BOOL_WKT_COORDS") == ["false"]

    def test_authority_coordinates_promoted(self, mets_root):
        from nodes.metadata_transform.authority import AuthorityResolver
        from nodes.metadata_transform.models import OutputField

        resolver = Mock(spec=AuthorityResolver)
        resolver.resolve.return_value = [
            OutputField("NORM_NAME", "Goethe, Johann Wolfgang von"),
            OutputField("WKT_COORDS", "11.3 50.9"),
            OutputField("BOOL_WKT_COORDS", "true"),
        ]

        result = _transform(mets_root, {"fields": {"MD_AUTHOR": [AUTHOR_RULE]}}, resolver=resolver)

        resolver.resolve.assert_called_once()
        assert result.values("WKT_COORDS") == ["11.3 50.9"]
        assert result.values("BOOL_WKT_COORDS") == ["true"]
        assert result.values("NORM_NAME") == []

    def test_repeatable(self, mets_root):
        """Test that transforming the same element twice gives the same fields."""
        first = _transform(mets_root, VOLUME_RULES)
        second = _transform(mets_root, VOLUME_RULES)

        assert first.fields == second.fields
        assert first.default_value == second.default_value

    def test_repeatable_with_authority_cache(self, mets_root):
        """Test that runs with a cleared authority cache give the same result."""
        from nodes.metadata_transform.authority import (
            AuthorityLookup,
            AuthorityResolver,
            InMemoryAuthorityCache,
            LookupResult,
        )

        lookup = Mock(spec=AuthorityLookup)
        lookup.lookup.return_value = LookupResult(
            success=True,
            entries=[
                ("NORM_NAME", "Goethe, Johann Wolfgang von"),
                ("NORM_IDENTIFIER", "118540238"),
                ("NORM_LIFEPERIOD", "1749-1832"),
            ],
        )
        cache = InMemoryAuthorityCache()
        resolver = AuthorityResolver(lookup, cache)

        first = _transform(mets_root, VOLUME_RULES, resolver=resolver)
        assert len(cache) == 1
        cache.clear()
        second = _transform(mets_root, VOLUME_RULES, resolver=resolver)

        assert lookup.lookup.call_count == 2
        assert first.fields == second.fields
        assert first.default_value == second.default_value
        assert first.to_dict() == second.to_dict()
        assert first.groups[0].values("GROUPFIELD") == ["MD_AUTHOR_118540238"]

    def test_to_dict(self, mets_root):
        result = _transform(mets_root, {"fields": {"MD_AUTHOR": [AUTHOR_RULE]}})

        document = result.to_dict()

        assert {"name": "MD_AUTHOR", "value": "Schiller, Friedrich"} in document["fields"]
        assert [group["main_value"] for group in document["grouped_metadata"]] == [
            "Goethe, Johann Wolfgang von",
            "Schiller, Friedrich",
        ]
        assert document["grouped_metadata"][0]["children"] == []
