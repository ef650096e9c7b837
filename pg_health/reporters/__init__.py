"""Report renderers: json, keyvalue and text."""
