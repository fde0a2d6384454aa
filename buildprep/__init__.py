"""
buildprep - pre-build provisioning for the XR runtime Android app.

Derives the version code/string from git, fetches Eigen when it is not
available locally, aggregates license texts into raw resources and assembles
the native build parameters for the selected deployment variant.
"""

__version__ = "1.0.0"
