"""GeoEstate parcel overlap detection and resolution engine."""

__version__ = "0.1.0"
