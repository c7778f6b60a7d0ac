"""
projectguard.api.routers

Router modules, one per resource family.
"""

# Package marker.
