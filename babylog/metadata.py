"""
----------------
babylog.metadata
----------------

Project metadata.
"""

version = '0.9.0'
