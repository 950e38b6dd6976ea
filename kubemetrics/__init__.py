"""Node and pod resource metrics storage, scrape loop and health probes."""

__version__ = "0.1.0"