"""
habitat_units

Habitat Unit accounting and baseline -> improvement conversion inference
for the Biodiversity Gain Sites register.
"""

__version__ = "1.0.0"
