"""Regular-expression search over copies of many repositories, kept current in the background."""

__version__ = "0.7.1"
__all__ = ["config", "vcs", "grep", "index", "searcher"]