"""dsqlkit - OCC-aware retries and migration bootstrap for Aurora DSQL."""

__version__ = "0.1.0"
