"""Clients for the external services the pipeline depends on.

Modules
-------
analysis
    Image → description (Gemini).
generation
    Prompt → image URL (Gradio Space, or a local placeholder renderer).
persistence
    Subscriptions, daily quotas and generated-image records (SQLite).
"""
