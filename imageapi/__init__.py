"""Multi-provider image generation service."""
