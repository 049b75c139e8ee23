"""
Parser registry: maps a vendor's parser_key to its VendorParser class.
"""

from app.models.vendor import Vendor
from app.services.parsers.base import ParseResult, VendorParser
from app.services.parsers.clearvision import ClearVisionParser
from app.services.parsers.etnia_barcelona import EtniaBarcelonaParser
from app.services.parsers.europa import EuropaParser
from app.services.parsers.generic_text import GenericTextParser
from app.services.parsers.ideal_optics import IdealOpticsParser
from app.services.parsers.jiecosystem import JiecosystemParser
from app.services.parsers.luxottica import LuxotticaParser
from app.services.parsers.marchon import MarchonParser
from app.services.parsers.safilo import SafiloParser

PARSERS: dict[str, type[VendorParser]] = {
    cls.key: cls
    for cls in (
        JiecosystemParser,
        LuxotticaParser,
        IdealOpticsParser,
        ClearVisionParser,
        SafiloParser,
        EtniaBarcelonaParser,
        EuropaParser,
        MarchonParser,
        GenericTextParser,
    )
}


def get_parser(vendor: Vendor) -> VendorParser:
    """
    Return a parser bound to vendor.

    Unknown parser keys fall back to the generic line parser.
    """
    parser_cls = PARSERS.get(vendor.parser_key, GenericTextParser)
    return parser_cls(vendor)


__all__ = ["ParseResult", "VendorParser", "PARSERS", "get_parser"]
