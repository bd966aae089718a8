"""Lokalise webhook receiver, storage publisher and render-time translation loader."""
