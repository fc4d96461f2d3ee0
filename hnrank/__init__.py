"""hnrank - ranking snapshots, scoring insights and periodic rescoring for Hacker News scrapes."""

__version__ = "0.1.0"
