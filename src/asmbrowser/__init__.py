"""asmbrowser - local web browser for .NET assemblies."""

__version__ = "0.1.0"
