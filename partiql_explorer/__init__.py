"""PartiQL Explorer: run PartiQL queries from a browser form."""

__version__ = '0.1.0'
