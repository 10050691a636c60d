"""SiNaK backend: business self-diagnosis and recommendations for UMKM."""

__version__ = "0.1.0"
