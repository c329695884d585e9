"""
Wordlist Extractor
==================
Turns a fixed-layout, two-column scanned word list into ordered
(definition, example) entries.

Architecture:
    - Rasterizer: Renders pages and crops per-column pixel buffers
    - Break Detector: Finds whitespace boundaries between entries
    - Region Extractor: Pulls reading-order text for each detected range
    - Page Cache: Persists ranges + records per (page, column)
    - Scheduler: Bounded process pool running one job per page
    - Aggregator: Deterministic merge of cached records into entries

Version: 1.0.0
"""

__version__ = "1.0.0"
