"""JVM distribution metadata crawler.

The package crawls vendor sources for JVM builds, normalises them into
:class:`~JvmMeta.models.CanonicalRecord` rows keyed by artifact URL, stores them
in DuckDB, and exports filtered, partitioned JSON slices for a static API.

Entry points:

- :class:`JvmMeta.orchestrator.CrawlOrchestrator` for a crawl run
- :func:`JvmMeta.exports.export` for filtered exports
- ``jvm-meta`` / ``python -m JvmMeta`` for the command line
"""

__version__ = "1.0.0"

__all__ = ["__version__"]
