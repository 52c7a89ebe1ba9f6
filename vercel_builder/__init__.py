"""Build Nuxt projects into serverless function packages, static assets and routes."""

__version__ = "0.18.19"
