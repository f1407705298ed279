"""Dump every image and manifest stored in an ECR registry as JSON lines."""

__version__ = '0.2.0'
