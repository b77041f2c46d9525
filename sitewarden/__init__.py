"""sitewarden — orchestration and operational-safety control plane."""

__version__ = "0.1.0"
