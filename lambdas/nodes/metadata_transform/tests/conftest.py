"""
Shared fixtures for metadata transform tests.

The sample document is a periodical (anchor) with one volume and one article
in its logical structure map.
"""

import pytest
from lxml import etree

METS_DOCUMENT = """<?xml version="1.0" encoding="UTF-8"?>
<mets:mets xmlns:mets="http://www.loc.gov/METS/"
           xmlns:mods="http://www.loc.gov/mods/v3"
           xmlns:xlink="http://www.w3.org/1999/xlink">
  <mets:dmdSec ID="DMDLOG_0000">
    <mets:mdWrap MDTYPE="MODS">
      <mets:xmlData>
        <mods:mods>
          <mods:titleInfo><mods:title>Zeitschrift für Geschichte</mods:title></mods:titleInfo>
        </mods:mods>
      </mets:xmlData>
    </mets:mdWrap>
  </mets:dmdSec>
  <mets:dmdSec ID="DMDLOG_0001">
    <mets:mdWrap MDTYPE="MODS">
      <mets:xmlData>
        <mods:mods>
          <mods:titleInfo>
            <mods:nonSort>Der</mods:nonSort>
            <mods:title>Band 7</mods:title>
          </mods:titleInfo>
          <mods:originInfo><mods:dateIssued>1870-1880</mods:dateIssued></mods:originInfo>
          <mods:name type="personal" authority="gnd" authorityURI="https://d-nb.info/gnd/" valueURI="118540238">
            <mods:displayForm>Goethe, Johann Wolfgang von</mods:displayForm>
            <mods:namePart type="family">Goethe</mods:namePart>
            <mods:namePart type="given">Johann Wolfgang von</mods:namePart>
            <mods:role><mods:roleTerm>aut</mods:roleTerm></mods:role>
          </mods:name>
          <mods:name type="personal">
            <mods:namePart type="family">Schiller</mods:namePart>
            <mods:namePart type="given">Friedrich</mods:namePart>
          </mods:name>
          <mods:subject>
            <mods:cartographics>
              <mods:coordinates>E0080000 E0090000 N0500000 N0510000</mods:coordinates>
            </mods:cartographics>
          </mods:subject>
          <mods:recordInfo><mods:recordIdentifier>PPN 123:45</mods:recordIdentifier></mods:recordInfo>
          <mods:note shareable="no">internal note</mods:note>
          <mods:note>public note</mods:note>
          <mods:part><mods:detail><mods:number>12</mods:number></mods:detail></mods:part>
        </mods:mods>
      </mets:xmlData>
    </mets:mdWrap>
  </mets:dmdSec>
  <mets:dmdSec ID="DMDLOG_0002">
    <mets:mdWrap MDTYPE="MODS">
      <mets:xmlData>
        <mods:mods>
          <mods:titleInfo><mods:title>Ein Aufsatz</mods:title></mods:titleInfo>
        </mods:mods>
      </mets:xmlData>
    </mets:mdWrap>
  </mets:dmdSec>
  <mets:structMap TYPE="LOGICAL">
    <mets:div ID="LOG_0000" TYPE="periodical" DMDID="DMDLOG_0000">
      <mets:mptr xlink:href="https://example.org/periodical.xml"/>
      <mets:div ID="LOG_0001" TYPE="volume" DMDID="DMDLOG_0001">
        <mets:div ID="LOG_0002" TYPE="article" DMDID="DMDLOG_0002"/>
      </mets:div>
    </mets:div>
  </mets:structMap>
</mets:mets>
"""


@pytest.fixture
def mets_document():
    """Sample METS/MODS document as text."""
    return METS_DOCUMENT


@pytest.fixture
def mets_root(mets_document):
    """Parsed sample METS/MODS document."""
    return etree.fromstring(mets_document.encode("utf-8"))
