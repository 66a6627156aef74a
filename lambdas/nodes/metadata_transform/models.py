"""Output model shared by every stage of the metadata transformation.

An OutputField is a single (name, value) pair destined for the search index.
Several fields may share a name; that is how multivalued index fields are
represented. The constants below are the index field names the engine
writes on its own account (as opposed to names taken from configuration).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Final

# Field name suffixes and prefixes
SUFFIX_UNTOKENIZED: Final[str] = "_UNTOKENIZED"
PREFIX_SORT: Final[str] = "SORT_"
PREFIX_SORTNUM: Final[str] = "SORTNUM_"
MIDFIX_LANG: Final[str] = "_LANG_"

# Record identifier and special-purpose fields
PI: Final[str] = "PI"
CURRENTNOSORT: Final[str] = "CURRENTNOSORT"
DEFAULT: Final[str] = "DEFAULT"
ACCESSCONDITION: Final[str] = "ACCESSCONDITION"
ACCESS_RESTRICTED_MARKER: Final[str] = "METADATA_ACCESS_RESTRICTED"

# Derived date fields
YEAR: Final[str] = "YEAR"
CENTURY: Final[str] = "CENTURY"
YEARMONTH: Final[str] = "YEARMONTH"
YEARMONTHDAY: Final[str] = "YEARMONTHDAY"
MONTHDAY: Final[str] = "MONTHDAY"

# Geocoordinate fields
WKT_COORDS: Final[str] = "WKT_COORDS"
BOOL_WKT_COORDS: Final[str] = "BOOL_WKT_COORDS"
NORM_COORDS: Final[str] = "NORM_COORDS"
NORM_COORDS_GEOJSON: Final[str] = "NORM_COORDS_GEOJSON"

# Grouped metadata fields
LABEL: Final[str] = "LABEL"
METADATATYPE: Final[str] = "METADATATYPE"
GROUPFIELD: Final[str] = "GROUPFIELD"
NORMDATATERMS: Final[str] = "NORMDATATERMS"
MD_VALUE: Final[str] = "MD_VALUE"
MD_DISPLAYFORM: Final[str] = "MD_DISPLAYFORM"
MD_LOCATION: Final[str] = "MD_LOCATION"
MD_FIRSTNAME: Final[str] = "MD_FIRSTNAME"
MD_LASTNAME: Final[str] = "MD_LASTNAME"

# Authority vocabulary keys
NORM_PREFIX: Final[str] = "NORM_"
NORM_URI: Final[str] = "NORM_URI"
NORM_NAME: Final[str] = "NORM_NAME"
NORM_IDENTIFIER: Final[str] = "NORM_IDENTIFIER"
NORM_PLACE: Final[str] = "NORM_PLACE"
NORM_DATE: Final[str] = "NORM_DATE"
NORM_LIFEPERIOD: Final[str] = "NORM_LIFEPERIOD"
NORM_STATICPAGE: Final[str] = "NORM_STATICPAGE"

# Fields that group value modifications never touch
STRUCTURAL_GROUP_FIELDS: Final[frozenset[str]] = frozenset(
    {GROUPFIELD, LABEL, METADATATYPE}
)


@dataclass(frozen=True)
class OutputField:
    """A named index field value.

    Attributes:
        name: Index field name
        value: Field value (never None)
    """

    name: str
    value: str

    def __post_init__(self) -> None:
        if self.name is None:
            raise ValueError("Field name may not be None")
        if self.value is None:
            raise ValueError(f"Value of field '{self.name}' may not be None")

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {"name": self.name, "value": self.value}
