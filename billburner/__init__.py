"""Bill scraping for household utility, telecom, mortgage and insurance portals."""

__version__ = "0.1.0"
